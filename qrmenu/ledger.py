from datetime import datetime, timezone

import structlog

from qrmenu.models import Payment, PaymentStatus, Subscription, utcnow

logger = structlog.get_logger()

# Invoice refreshes never move a payment down this ladder.
STATUS_RANK = {
    PaymentStatus.CREATED.value: 1,
    PaymentStatus.FAILED.value: 2,
    PaymentStatus.AUTHORIZED.value: 3,
    PaymentStatus.CAPTURED.value: 4,
    PaymentStatus.REFUNDED.value: 5,
}


def from_epoch(value):
    """Razorpay sends Unix epoch seconds; anything else is treated as absent."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _find_payment(db, payment_id, invoice_id):
    if payment_id:
        return db.query(Payment).filter_by(razorpay_payment_id=payment_id).first()
    if invoice_id:
        return db.query(Payment).filter_by(razorpay_invoice_id=invoice_id).first()
    return None


def upsert_payment(db, subscription: Subscription, status: str, payment: dict = None, invoice: dict = None):
    """
    Create or overwrite the ledger row for a payment/invoice pair.

    The row is keyed by the Razorpay payment id, falling back to the invoice id.
    Amount and status are overwritten on every call so replays do not duplicate.
    """
    payment = payment or {}
    invoice = invoice or {}

    payment_id = payment.get("id") or invoice.get("payment_id")
    invoice_id = invoice.get("id") or payment.get("invoice_id")

    amount = payment.get("amount")
    if amount is None:
        amount = invoice.get("amount_paid")
    if amount is None:
        amount = invoice.get("amount")

    if status == PaymentStatus.FAILED.value:
        description = f"Failed payment for {subscription.plan} plan"
    else:
        description = f"{subscription.plan} plan subscription payment"

    record = _find_payment(db, payment_id, invoice_id)
    if record is None:
        record = Payment(owner_id=subscription.owner_id)
        db.add(record)

    record.owner_id = subscription.owner_id
    record.subscription_id = subscription.id
    record.razorpay_payment_id = payment_id or record.razorpay_payment_id
    record.razorpay_order_id = payment.get("order_id") or record.razorpay_order_id
    record.razorpay_invoice_id = invoice_id or record.razorpay_invoice_id
    record.amount = int(amount or 0)
    record.currency = payment.get("currency") or invoice.get("currency") or "INR"
    record.status = status
    record.method = payment.get("method") or record.method
    record.description = description
    record.invoice_url = invoice.get("short_url") or record.invoice_url
    record.paid_at = (
        from_epoch(invoice.get("paid_at"))
        or from_epoch(payment.get("created_at"))
        or utcnow()
    )

    db.flush()
    logger.info(
        "Payment ledger upserted",
        payment_id=payment_id,
        invoice_id=invoice_id,
        status=status,
        amount=record.amount,
    )
    return record


def _invoice_status(invoice: dict) -> str:
    if invoice.get("status") == "paid":
        return PaymentStatus.CAPTURED.value
    if invoice.get("status") == "expired":
        return PaymentStatus.FAILED.value
    return PaymentStatus.CREATED.value


def merge_invoices(db, subscription: Subscription, invoices: list) -> int:
    """
    Fold provider invoices into the ledger without losing what webhooks recorded.

    Status only moves up STATUS_RANK; existing amount, invoice URL and paid-at
    values win over the invoice's. Returns the number of invoices merged.
    """
    merged = 0
    for invoice in invoices:
        if not invoice or not invoice.get("id"):
            continue

        invoice_id = str(invoice["id"])
        payment_id = str(invoice["payment_id"]) if invoice.get("payment_id") else None
        status = _invoice_status(invoice)

        amount = invoice.get("amount_paid")
        if not isinstance(amount, int):
            amount = invoice.get("amount") if isinstance(invoice.get("amount"), int) else 0

        record = db.query(Payment).filter_by(razorpay_invoice_id=invoice_id).first()
        if record is None and payment_id:
            record = db.query(Payment).filter_by(razorpay_payment_id=payment_id).first()

        if record is None:
            record = Payment(
                owner_id=subscription.owner_id,
                amount=amount,
                currency=invoice.get("currency") or "INR",
                status=status,
            )
            db.add(record)
        else:
            if STATUS_RANK.get(status, 0) > STATUS_RANK.get(record.status, 0):
                record.status = status
            if not record.amount or record.amount <= 0:
                record.amount = amount
            record.currency = record.currency or invoice.get("currency") or "INR"

        record.owner_id = subscription.owner_id
        record.subscription_id = subscription.id
        record.razorpay_invoice_id = invoice_id
        record.razorpay_payment_id = record.razorpay_payment_id or payment_id
        record.invoice_url = (
            record.invoice_url
            or invoice.get("short_url")
            or invoice.get("invoice_url")
            or invoice.get("receipt")
        )
        record.paid_at = record.paid_at or from_epoch(invoice.get("paid_at"))
        merged += 1

    db.flush()
    return merged
