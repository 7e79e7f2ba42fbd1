import hmac
import logging

from flask import Blueprint, current_app, request
from flask_login import current_user, login_required

from ...extensions import csrf, db, limiter
from ...models import Subscription, Transaction
from ...services.billing import activation_sweeper
from ...services.billing.errors import (
    AlreadyScheduled,
    BillingError,
    BillingValidationError,
    PaymentGatewayError,
    SubscriptionNotFound,
    TransactionNotFound,
)
from ...services.billing.plan_catalog import PlanCatalog
from ...services.billing.upgrade_orchestrator import UpgradeOrchestrator
from ...services.billing.webhook_handler import PaymentWebhookHandler
from ...utils.api_responses import APIResponse
from ...utils.timezone_utils import TimezoneUtils

logger = logging.getLogger(__name__)

GENERIC_UPGRADE_FAILURE = "Could not complete upgrade"

webhook_bp = Blueprint('payment_webhooks', __name__, url_prefix='/webhooks')
subscription_bp = Blueprint('subscription', __name__, url_prefix='/subscription')
cron_bp = Blueprint('cron', __name__, url_prefix='/cron')


def _webhook_rate_limit():
    return current_app.config.get('WEBHOOK_RATE_LIMIT', '120/minute')


# --- Webhooks ---

@webhook_bp.route('/payment', methods=['POST'])
@webhook_bp.route('/payment/<provider>', methods=['POST'])
@csrf.exempt
@limiter.limit(_webhook_rate_limit)
def payment_webhook(provider=None):
    """Gateway callback; the status code drives gateway redelivery."""
    result = PaymentWebhookHandler.handle(provider, request.get_data(), request.headers)
    if result.acknowledged:
        return APIResponse.success(result.to_dict(), result.message, result.status_code)
    return APIResponse.error(result.message, status_code=result.status_code)


# --- Subscription ---

def _billing_admin_required():
    if not getattr(current_user, 'can_manage_billing', False):
        return APIResponse.forbidden('Only tenant admins can change the subscription plan')
    return None


@subscription_bp.route('/plans', methods=['GET'])
def list_plans():
    return APIResponse.success([plan.to_dict() for plan in PlanCatalog.list_active_plans()])


@subscription_bp.route('/current', methods=['GET'])
@login_required
def current_subscription():
    subscription = Subscription.query.filter_by(tenant_id=current_user.tenant_id).first()
    if subscription is None:
        return APIResponse.not_found('Subscription')
    return APIResponse.success(subscription.to_dict())


@subscription_bp.route('/upgrade', methods=['POST'])
@login_required
def request_upgrade():
    denied = _billing_admin_required()
    if denied:
        return denied

    data = APIResponse.handle_request_content()
    plan_id = data.get('planId')
    upgrade_option = data.get('upgradeOption')
    errors = {}
    if plan_id in (None, ''):
        errors['planId'] = ['planId is required']
    if not upgrade_option:
        errors['upgradeOption'] = ['upgradeOption is required']
    if errors:
        return APIResponse.validation_error(errors)

    try:
        result = UpgradeOrchestrator.request_upgrade(
            current_user.tenant_id,
            plan_id,
            upgrade_option,
            customer_email=current_user.email,
        )
    except AlreadyScheduled as e:
        return APIResponse.error(str(e), status_code=409)
    except BillingValidationError as e:
        return APIResponse.error(str(e), status_code=e.http_status)
    except PaymentGatewayError as e:
        logger.error(f"Checkout creation failed for tenant {current_user.tenant_id}: {e}")
        return APIResponse.error(GENERIC_UPGRADE_FAILURE, status_code=502)
    except BillingError as e:
        logger.error(f"Upgrade request failed for tenant {current_user.tenant_id}: {e}")
        return APIResponse.error(GENERIC_UPGRADE_FAILURE, status_code=e.http_status)

    return APIResponse.success(result.to_dict(), 'Checkout created', 201)


@subscription_bp.route('/upgrade/complete', methods=['POST'])
@login_required
def complete_upgrade():
    """Synchronous fallback when the checkout UI returns before the webhook lands."""
    data = APIResponse.handle_request_content()
    order_id = data.get('orderId')
    if not order_id:
        return APIResponse.validation_error({'orderId': ['orderId is required']})

    transaction = Transaction.query.filter_by(order_id=order_id).first()
    if transaction is None or transaction.tenant_id != current_user.tenant_id:
        return APIResponse.not_found('Transaction')

    try:
        result = PaymentWebhookHandler.reconcile(order_id)
    except TransactionNotFound:
        return APIResponse.not_found('Transaction')
    except BillingError as e:
        logger.error(f"Reconcile failed for order {order_id}: {e}")
        return APIResponse.error(GENERIC_UPGRADE_FAILURE, status_code=e.http_status)

    db.session.refresh(transaction)
    return APIResponse.success({**result.to_dict(), 'status': transaction.status}, result.message)


@subscription_bp.route('/cancel', methods=['POST'])
@login_required
def cancel_subscription():
    denied = _billing_admin_required()
    if denied:
        return denied

    try:
        subscription = UpgradeOrchestrator.cancel_subscription(current_user.tenant_id)
    except SubscriptionNotFound:
        return APIResponse.not_found('Subscription')
    except BillingError as e:
        logger.error(f"Cancellation failed for tenant {current_user.tenant_id}: {e}")
        return APIResponse.error('Cancellation failed', status_code=e.http_status)

    return APIResponse.success(subscription.to_dict(), 'Subscription cancelled')


@subscription_bp.route('/scheduled', methods=['DELETE'])
@login_required
def clear_scheduled_change():
    """Drop a pending end-of-period change so a different plan can be scheduled."""
    denied = _billing_admin_required()
    if denied:
        return denied

    try:
        subscription = UpgradeOrchestrator.clear_scheduled_change(current_user.tenant_id)
    except SubscriptionNotFound:
        return APIResponse.not_found('Subscription')
    except BillingError as e:
        logger.error(f"Clearing scheduled change failed for tenant {current_user.tenant_id}: {e}")
        return APIResponse.error('Could not clear scheduled change', status_code=e.http_status)

    return APIResponse.success(subscription.to_dict(), 'Scheduled change cleared')


# --- Cron ---

def _internal_access_granted() -> bool:
    secret = current_app.config.get('CRON_SECRET')
    provided = request.headers.get('X-Internal-Access', '')
    return bool(secret) and hmac.compare_digest(provided, secret)


def _parse_now():
    data = APIResponse.handle_request_content()
    raw = data.get('now')
    return TimezoneUtils.parse_iso(raw) if raw else TimezoneUtils.utc_now()


@cron_bp.route('/activate-scheduled-upgrades', methods=['POST'])
@csrf.exempt
def activate_scheduled_upgrades():
    if not _internal_access_granted():
        return APIResponse.error('Unauthorized', status_code=401)
    try:
        now = _parse_now()
    except ValueError:
        return APIResponse.validation_error({'now': ['Expected an ISO-8601 timestamp']})
    activated = activation_sweeper.run_once(now)
    return APIResponse.success({'activated': activated, 'now': TimezoneUtils.format_for_api(now)})


@cron_bp.route('/expire-lapsed', methods=['POST'])
@csrf.exempt
def expire_lapsed():
    if not _internal_access_granted():
        return APIResponse.error('Unauthorized', status_code=401)
    try:
        now = _parse_now()
    except ValueError:
        return APIResponse.validation_error({'now': ['Expected an ISO-8601 timestamp']})
    expired = activation_sweeper.expire_lapsed(now)
    return APIResponse.success({'expired': expired, 'now': TimezoneUtils.format_for_api(now)})
