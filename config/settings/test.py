"""
With these settings, tests run faster.
"""

import os

# Dummy Stripe credentials so BillingService can be constructed; every Stripe
# call in the test suite is mocked.
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy_test_key_for_testing")
os.environ.setdefault("STRIPE_PUBLIC_KEY", "pk_test_dummy_test_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_dummy_test_secret")
os.environ.setdefault("STRIPE_PRICE_PRO", "price_test_pro")
os.environ.setdefault("STRIPE_PRICE_ULTRA", "price_test_ultra")

from .base import *  # noqa: E402, F403
from .base import DATABASES  # noqa: E402
from .base import LOGGING  # noqa: E402
from .base import REST_FRAMEWORK  # noqa: E402
from .base import env  # noqa: E402

# GENERAL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#secret-key
SECRET_KEY = env(
    "DJANGO_SECRET_KEY",
    default="q3kU8Q0s1mJ4vYx7cN2eR9tB6wZ5hL0pA3dF8gK1jM4nV7bC2xS5zQ9rT6yW3uE0",
)
# https://docs.djangoproject.com/en/dev/ref/settings/#test-runner
TEST_RUNNER = "django.test.runner.DiscoverRunner"
DATABASES["default"]["CONN_MAX_AGE"] = 0  # type: ignore[name-defined]
# https://docs.djangoproject.com/en/dev/ref/settings/#allowed-hosts
ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# PASSWORDS
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#password-hashers
PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# STATIC
# ------------------------------------------------------------------------------
STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.InMemoryStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

# LOGGING
# ------------------------------------------------------------------------------
LOGGING["loggers"]["plangate"]["level"] = "DEBUG"  # type: ignore[index]

# Your stuff...
# ------------------------------------------------------------------------------

# Disable DRF throttling in tests to prevent rate limit failures during test runs
REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []  # type: ignore[name-defined]
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}  # type: ignore[name-defined]
