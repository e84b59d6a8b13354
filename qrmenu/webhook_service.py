import hashlib
import hmac

import structlog

from qrmenu import ledger
from qrmenu.models import PaymentStatus, Subscription, SubscriptionStatus

logger = structlog.get_logger()

PERIOD_EVENTS = ("subscription.activated", "subscription.completed", "subscription.charged")
PAYMENT_EVENTS = ("invoice.paid", "payment.captured", "payment.authorized")


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA256 over the raw request bytes, hex encoded, as Razorpay signs it."""
    if not signature:
        return False
    computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed.encode(), signature.encode())


def _entity(event: dict, name: str) -> dict:
    entity = ((event.get("payload") or {}).get(name) or {}).get("entity")
    return entity if isinstance(entity, dict) else {}


def resolve_subscription_id(event: dict):
    """First of subscription.id, payment.subscription_id, invoice.subscription_id."""
    return (
        _entity(event, "subscription").get("id")
        or _entity(event, "payment").get("subscription_id")
        or _entity(event, "invoice").get("subscription_id")
    )


def _set_period(subscription: Subscription, start, end):
    start = ledger.from_epoch(start)
    end = ledger.from_epoch(end)
    if start:
        subscription.current_period_start = start
    if end:
        subscription.current_period_end = end


def _activate(subscription: Subscription):
    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.trial_ends_at = None


def apply_event(subscription: Subscription, event_type: str, event: dict):
    """
    Mutate the subscription for one event and return the ledger write it needs.

    The return value is None or a (status, payment_entity, invoice_entity) tuple.
    No transition is checked against the current status.
    """
    sub_entity = _entity(event, "subscription")
    payment = _entity(event, "payment")
    invoice = _entity(event, "invoice")

    if event_type == "subscription.authenticated":
        subscription.status = SubscriptionStatus.TRIALING.value
        subscription.has_used_trial = True
        trial_end = ledger.from_epoch(
            sub_entity.get("charge_at") or sub_entity.get("start_at") or sub_entity.get("current_end")
        )
        if trial_end:
            subscription.trial_ends_at = trial_end

    elif event_type in PERIOD_EVENTS:
        _activate(subscription)
        _set_period(subscription, sub_entity.get("current_start"), sub_entity.get("current_end"))
        if event_type == "subscription.charged" and payment:
            return PaymentStatus.CAPTURED.value, payment, invoice

    elif event_type == "subscription.pending":
        subscription.status = SubscriptionStatus.PENDING.value

    elif event_type in ("subscription.halted", "subscription.paused"):
        subscription.status = SubscriptionStatus.HALTED.value

    elif event_type == "subscription.cancelled":
        subscription.status = SubscriptionStatus.CANCELLED.value
        subscription.cancel_at_period_end = False
        subscription.current_period_end = None

    elif event_type == "payment.refunded":
        return PaymentStatus.REFUNDED.value, payment, invoice

    elif event_type == "payment.failed":
        # A failure that names another subscription belongs to another tenant.
        reference = payment.get("subscription_id") or invoice.get("subscription_id")
        if reference != subscription.razorpay_subscription_id:
            logger.info("Failed payment for other subscription ignored", reference=reference)
            return None
        subscription.status = SubscriptionStatus.PAST_DUE.value
        return PaymentStatus.FAILED.value, payment, invoice

    elif event_type in PAYMENT_EVENTS:
        _activate(subscription)
        if invoice:
            _set_period(subscription, invoice.get("billing_start"), invoice.get("billing_end"))
        if event_type == "payment.authorized":
            return PaymentStatus.AUTHORIZED.value, payment, invoice
        return PaymentStatus.CAPTURED.value, payment, invoice

    else:
        logger.info("Unhandled webhook event", event_type=event_type)

    return None


def handle_event(db, event: dict) -> dict:
    """
    Reconcile the local subscription with one verified Razorpay event.

    Errors from the subscription write propagate so the caller can fail the
    request and let Razorpay retry. Ledger errors are logged and dropped once
    the subscription change is committed.
    """
    event_type = event.get("event")
    razorpay_subscription_id = resolve_subscription_id(event)
    log = logger.bind(event_type=event_type, subscription_id=razorpay_subscription_id)

    if not razorpay_subscription_id:
        log.info("Webhook without subscription reference ignored")
        return {"ok": True, "ignored": "no subscription reference"}

    subscription = (
        db.query(Subscription)
        .filter_by(razorpay_subscription_id=razorpay_subscription_id)
        .first()
    )
    if subscription is None:
        log.info("Webhook for unknown subscription ignored")
        return {"ok": True, "ignored": "subscription not found"}

    old_status = subscription.status
    ledger_write = apply_event(subscription, event_type, event)
    db.commit()

    if old_status != subscription.status:
        log.info("Subscription status changed", old_status=old_status, new_status=subscription.status)

    if ledger_write is not None:
        status, payment, invoice = ledger_write
        try:
            ledger.upsert_payment(db, subscription, status, payment=payment, invoice=invoice)
            db.commit()
        except Exception:
            db.rollback()
            log.exception("Payment ledger upsert failed", payment_status=status)

    return {"ok": True}
