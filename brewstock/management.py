"""Billing maintenance and scheduling commands."""

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Subscription
from .services.billing import activation_sweeper
from .services.billing.compensation_ledger import CompensationLedger
from .services.billing.errors import BillingError
from .services.billing.webhook_handler import PaymentWebhookHandler
from .utils.timezone_utils import TimezoneUtils


def _parse_now(value):
    if not value:
        return TimezoneUtils.utc_now()
    try:
        return TimezoneUtils.parse_iso(value)
    except ValueError as e:
        raise click.BadParameter(f"expected an ISO-8601 timestamp, got {value!r}") from e


@click.command("activate-scheduled-upgrades")
@click.option("--now", "now_value", default=None, help="ISO timestamp to sweep as of (defaults to current UTC time)")
@click.option("--limit", type=int, default=None, help="Maximum subscriptions to promote in this run")
@with_appcontext
def activate_scheduled_upgrades_command(now_value, limit):
    """Promote end-of-period plan changes whose period has ended."""
    now = _parse_now(now_value)
    print(f"🔄 Activating scheduled upgrades as of {now.isoformat()}...")
    activated = activation_sweeper.run_once(now, limit=limit)
    print(f"✅ Activated {activated} scheduled upgrade(s)")


@click.command("expire-lapsed-subscriptions")
@click.option("--now", "now_value", default=None, help="ISO timestamp to evaluate against")
@with_appcontext
def expire_lapsed_subscriptions_command(now_value):
    """Expire paid subscriptions past their period end plus the grace window."""
    now = _parse_now(now_value)
    grace = current_app.config.get("SUBSCRIPTION_GRACE_DAYS", 7)
    print(f"🔄 Expiring subscriptions lapsed more than {grace} day(s) before {now.isoformat()}...")
    expired = activation_sweeper.expire_lapsed(now)
    print(f"✅ Expired {expired} subscription(s)")


@click.command("reconcile-order")
@click.argument("order_id")
@click.option("--provider", default=None, help="Payment provider (defaults to PAYMENT_PROVIDER)")
@with_appcontext
def reconcile_order_command(order_id, provider):
    """Fetch an order's status from the gateway and apply it."""
    try:
        result = PaymentWebhookHandler.reconcile(order_id, provider)
    except BillingError as e:
        print(f"❌ Reconcile failed for {order_id}: {e}")
        raise click.exceptions.Exit(1)
    print(f"✅ {order_id}: {result.message} ({result.outcome})")


@click.command("seed-plans")
@click.option("--currency", default=None, help="Currency for seeded plans (defaults to DEFAULT_CURRENCY)")
@with_appcontext
def seed_plans_command(currency):
    """Seed the default plan catalog (idempotent)."""
    from .seeders import seed_plans

    try:
        created = seed_plans(currency or current_app.config.get("DEFAULT_CURRENCY", "IDR"))
        print(f"✅ Seeded {len(created)} plan(s)")
    except Exception as e:
        print(f"❌ Plan seeding failed: {str(e)}")
        db.session.rollback()
        raise


@click.command("extend-subscription")
@click.argument("tenant_id", type=int)
@click.argument("amount", type=int)
@with_appcontext
def extend_subscription_command(tenant_id, amount):
    """Convert AMOUNT (minor units) into extra service days for TENANT_ID."""
    subscription = Subscription.query.filter_by(tenant_id=tenant_id).first()
    if subscription is None:
        print(f"❌ Tenant {tenant_id} has no subscription")
        raise click.exceptions.Exit(1)
    try:
        adjustment = CompensationLedger.extend_for_value(subscription.id, amount)
        db.session.commit()
    except BillingError as e:
        db.session.rollback()
        print(f"❌ Extension failed: {e}")
        raise click.exceptions.Exit(1)
    details = adjustment.details or {}
    print(f"✅ Extended by {details.get('days_added')} day(s); period now ends {details.get('new_period_end')}")


BILLING_COMMANDS = (
    activate_scheduled_upgrades_command,
    expire_lapsed_subscriptions_command,
    reconcile_order_command,
    seed_plans_command,
    extend_subscription_command,
)


def register_commands(app):
    """Register all CLI commands."""
    for command in BILLING_COMMANDS:
        app.cli.add_command(command)
