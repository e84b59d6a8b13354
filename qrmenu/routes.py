import os
from datetime import timedelta
from typing import Optional

import requests
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from qrmenu.auth import get_current_owner
from qrmenu.database import SessionLocal
from qrmenu.ledger import merge_invoices
from qrmenu.models import Payment, Subscription, SubscriptionStatus, utcnow
from qrmenu.razorpay_service import (
    cancel_subscription,
    create_subscription,
    list_invoices,
    plan_id_for,
)
from qrmenu.trial_service import TRIAL_DAYS, check_trial_eligibility

logger = structlog.get_logger()

router = APIRouter(prefix="/billing", tags=["billing"])


class SubscribeRequest(BaseModel):
    plan: str = "basic"
    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


def _owner_subscription(db, owner_id):
    return db.query(Subscription).filter_by(owner_id=owner_id).first()


def _parse_limit(raw) -> int:
    """Missing, zero or non-numeric limits mean 50; anything else is clamped to 1..200."""
    try:
        limit = int(raw) if raw else 50
    except ValueError:
        limit = 50
    return min(max(limit or 50, 1), 200)


@router.get("/status")
def subscription_status(owner_id: str = Depends(get_current_owner)):
    db = SessionLocal()
    try:
        sub = _owner_subscription(db, owner_id)
        if not sub:
            return {"status": SubscriptionStatus.NONE.value}

        return {
            "status": sub.status,
            "provider": sub.provider,
            "plan": sub.plan,
            "interval": sub.interval,
            "trial_ends_at": sub.trial_ends_at,
            "current_period_start": sub.current_period_start,
            "current_period_end": sub.current_period_end,
            "cancel_at_period_end": sub.cancel_at_period_end,
        }
    finally:
        db.close()


@router.get("/trial-eligibility")
def trial_eligibility(owner_id: str = Depends(get_current_owner)):
    db = SessionLocal()
    try:
        result = check_trial_eligibility(_owner_subscription(db, owner_id))
    finally:
        db.close()
    return {"success": True, **result}


@router.post("/subscribe")
def subscribe(request: SubscribeRequest, owner_id: str = Depends(get_current_owner)):
    plan = "advance" if request.plan == "advance" else "basic"

    try:
        plan_id = plan_id_for(plan)
    except RuntimeError as exc:
        logger.error("Razorpay plans not configured", error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))

    db = SessionLocal()
    try:
        sub = _owner_subscription(db, owner_id)

        # Razorpay holds the first charge until start_at, which is what makes the trial free.
        trial_ends_at = None
        start_at = None
        if check_trial_eligibility(sub)["is_eligible"]:
            trial_ends_at = utcnow() + timedelta(days=TRIAL_DAYS)
            start_at = int(trial_ends_at.timestamp())

        try:
            remote = create_subscription(
                plan_id, notes={"ownerId": owner_id, "plan": plan}, start_at=start_at
            )
        except requests.RequestException as exc:
            logger.warning("Razorpay subscription create failed", owner_id=owner_id, error=str(exc))
            raise HTTPException(status_code=502, detail="Payment provider error")

        if sub is None:
            sub = Subscription(owner_id=owner_id, status=SubscriptionStatus.PENDING.value)
            db.add(sub)
        sub.provider = "razorpay"
        sub.plan = plan
        sub.razorpay_subscription_id = remote["id"]
        sub.razorpay_customer_id = remote.get("customer_id") or sub.razorpay_customer_id
        db.commit()

        logger.info("Subscription created", owner_id=owner_id, subscription_id=remote["id"], plan=plan)
    finally:
        db.close()

    return {
        "success": True,
        "subscription_id": remote["id"],
        "trial_ends_at": trial_ends_at,
        "key_id": os.getenv("RAZORPAY_KEY_ID"),
        "plan": plan,
        "checkout": {
            "subscription_id": remote["id"],
            "name": "QR Menu Manager",
            "description": f"{plan.capitalize()} plan subscription",
            "prefill": {
                "name": request.name,
                "email": request.email,
                "contact": request.contact,
            },
            "notes": {"ownerId": owner_id},
        },
    }


@router.post("/cancel")
def cancel(owner_id: str = Depends(get_current_owner)):
    db = SessionLocal()
    try:
        sub = _owner_subscription(db, owner_id)
        if not sub or not sub.razorpay_subscription_id:
            raise HTTPException(status_code=404, detail="No subscription found")

        try:
            cancel_subscription(sub.razorpay_subscription_id)
        except requests.RequestException as exc:
            logger.warning(
                "Razorpay subscription cancel failed",
                subscription_id=sub.razorpay_subscription_id,
                error=str(exc),
            )
            raise HTTPException(status_code=502, detail="Payment provider error")

        sub.status = SubscriptionStatus.CANCELLED.value
        sub.cancel_at_period_end = False
        db.commit()
        logger.info("Subscription cancelled by owner", owner_id=owner_id)
    finally:
        db.close()

    return {"success": True}


@router.get("/payments")
def payment_history(
    limit: Optional[str] = Query(None),
    refresh: bool = Query(False),
    owner_id: str = Depends(get_current_owner),
):
    limit = _parse_limit(limit)

    db = SessionLocal()
    try:
        if refresh:
            sub = _owner_subscription(db, owner_id)
            if sub and sub.razorpay_subscription_id:
                try:
                    invoices = list_invoices(sub.razorpay_subscription_id, count=limit)
                    merge_invoices(db, sub, invoices)
                    db.commit()
                except Exception as exc:
                    db.rollback()
                    logger.warning("Payment refresh from Razorpay failed", owner_id=owner_id, error=str(exc))

        payments = (
            db.query(Payment)
            .filter_by(owner_id=owner_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(limit)
            .all()
        )

        seen = set()
        result = []
        for p in payments:
            key = p.razorpay_payment_id or p.razorpay_invoice_id or str(p.id)
            if key in seen:
                continue
            seen.add(key)
            result.append({
                "razorpay_payment_id": p.razorpay_payment_id,
                "razorpay_invoice_id": p.razorpay_invoice_id,
                "amount": p.amount,
                "currency": p.currency,
                "status": p.status,
                "method": p.method,
                "paid_at": p.paid_at,
                "created_at": p.created_at,
                "invoice_url": p.invoice_url,
            })
    finally:
        db.close()

    return {"payments": result}
