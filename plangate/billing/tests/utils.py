"""Stripe payload builders shared by the webhook and view tests."""

import hashlib
import hmac
import json
import time
from datetime import timedelta


def epoch(value):
    return int(value.timestamp())


def stripe_subscription(org_id, now, **overrides):
    """A ``customer.subscription`` object as Stripe sends it."""
    metadata = {"organizationId": str(org_id), "planId": "pro"} if org_id else {}
    data = {
        "id": "sub_123",
        "object": "subscription",
        "status": "active",
        "customer": "cus_123",
        "metadata": metadata,
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_123",
                    "price": {"id": "price_test_pro", "object": "price"},
                    "current_period_end": epoch(now + timedelta(days=30)),
                },
            ],
        },
        "cancel_at": None,
        "cancel_at_period_end": False,
        "trial_start": None,
        "trial_end": None,
    }
    data.update(overrides)
    return data


def stripe_event(event_type, obj, now, *, event_id="evt_123"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": epoch(now),
        "data": {"object": obj},
    }


def sign_payload(payload, secret, timestamp=None):
    """Build a ``Stripe-Signature`` header for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_body(event, secret):
    payload = json.dumps(event)
    return payload, sign_payload(payload, secret)
