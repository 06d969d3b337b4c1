"""
Management command to create Stripe products and prices for the paid plans.

The plan catalog lives in code; Stripe needs a Product and a recurring Price
per paid plan for checkout. This command finds or creates them (matched on
``planId`` metadata, so it is safe to run repeatedly) and prints the
environment lines that point the app at the prices.

Usage:
    python manage.py setup_stripe_prices          # Find or create, print env
    python manage.py setup_stripe_prices --list   # List matching prices and exit
"""

import stripe
from django.conf import settings
from django.core.management.base import BaseCommand
from django.core.management.base import CommandError

from plangate.billing.constants import METADATA_PLAN_KEY
from plangate.billing.plans import all_plans

CURRENCY = "usd"


def env_var_for(plan_id: str) -> str:
    return f"STRIPE_PRICE_{plan_id.upper()}"


class Command(BaseCommand):
    help = "Create (or find) Stripe products and prices for paid plans"

    def add_arguments(self, parser):
        parser.add_argument(
            "--list",
            action="store_true",
            help="List Stripe prices tagged with a plan and exit",
        )

    def handle(self, *args, **options):
        if not settings.STRIPE_SECRET_KEY:
            msg = (
                "STRIPE_SECRET_KEY not configured.\n"
                "Add to environment: STRIPE_SECRET_KEY=sk_test_..."
            )
            raise CommandError(msg)
        stripe.api_key = settings.STRIPE_SECRET_KEY

        if options["list"]:
            self._list_prices()
            return

        paid_plans = [plan for plan in all_plans() if plan.is_paid]
        env_lines = []
        for plan in paid_plans:
            product = self._find_or_create_product(plan)
            price = self._find_or_create_price(plan, product.id)
            env_lines.append(f"{env_var_for(plan.id)}={price.id}")

        self.stdout.write("\n" + "=" * 60)
        self.stdout.write("Add to your environment:")
        self.stdout.write("=" * 60)
        for line in env_lines:
            self.stdout.write(f"  {line}")

    def _find_or_create_product(self, plan):
        products = stripe.Product.list(limit=100, active=True)
        for product in products.auto_paging_iter():
            if (product.metadata or {}).get(METADATA_PLAN_KEY) == plan.id:
                self.stdout.write(f"  Exists: product {product.name} ({product.id})")
                return product

        product = stripe.Product.create(
            name=plan.name,
            description=plan.description,
            metadata={METADATA_PLAN_KEY: plan.id},
        )
        self.stdout.write(
            self.style.SUCCESS(f"  Created: product {product.name} ({product.id})"),
        )
        return product

    def _find_or_create_price(self, plan, product_id: str):
        prices = stripe.Price.list(product=product_id, active=True, limit=100)
        for price in prices.auto_paging_iter():
            recurring = price.recurring or {}
            if (
                price.unit_amount == plan.price_cents
                and price.currency == CURRENCY
                and recurring.get("interval") == plan.interval
                and (price.metadata or {}).get(METADATA_PLAN_KEY) == plan.id
            ):
                self.stdout.write(f"  Exists: price for {plan.name} ({price.id})")
                return price

        price = stripe.Price.create(
            product=product_id,
            unit_amount=plan.price_cents,
            currency=CURRENCY,
            recurring={"interval": str(plan.interval)},
            metadata={METADATA_PLAN_KEY: plan.id},
        )
        self.stdout.write(
            self.style.SUCCESS(
                f"  Created: price for {plan.name} "
                f"(${plan.price_cents / 100:.0f}/{plan.interval}, {price.id})",
            ),
        )
        return price

    def _list_prices(self):
        prices = stripe.Price.list(active=True, limit=100)
        found = 0
        for price in prices.auto_paging_iter():
            plan_id = (price.metadata or {}).get(METADATA_PLAN_KEY)
            if not plan_id:
                continue
            found += 1
            amount = (price.unit_amount or 0) / 100
            interval = (price.recurring or {}).get("interval", "?")
            self.stdout.write(f"  {plan_id}: ${amount:.0f}/{interval} ({price.id})")

        if not found:
            self.stdout.write(
                self.style.WARNING(
                    "  No prices tagged with plan metadata.\n"
                    "    Run: python manage.py setup_stripe_prices",
                ),
            )
