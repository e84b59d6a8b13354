from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from qrmenu.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    NONE = "none"              # reported only, never stored
    TRIALING = "trialing"
    ACTIVE = "active"
    PENDING = "pending"
    HALTED = "halted"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    FAILED = "failed"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String, unique=True, index=True, nullable=False)
    provider = Column(String, nullable=False, default="razorpay")
    razorpay_customer_id = Column(String)
    razorpay_subscription_id = Column(String, index=True)   # Razorpay sub_... id
    plan = Column(String, nullable=False, default="basic")  # basic | advance
    interval = Column(String, nullable=False, default="monthly")
    status = Column(String, nullable=False, default=SubscriptionStatus.PENDING.value)
    has_used_trial = Column(Boolean, nullable=False, default=False)
    trial_ends_at = Column(DateTime(timezone=True))
    current_period_start = Column(DateTime(timezone=True))
    current_period_end = Column(DateTime(timezone=True))
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    # UPDATE ... WHERE version = :read_version; a concurrent writer raises StaleDataError
    __mapper_args__ = {"version_id_col": version}


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String, index=True, nullable=False)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"))
    razorpay_payment_id = Column(String, unique=True, index=True)  # pay_... id
    razorpay_order_id = Column(String)
    razorpay_invoice_id = Column(String, index=True)               # inv_... id
    amount = Column(Integer, nullable=False, default=0)            # paise
    currency = Column(String, nullable=False, default="INR")
    status = Column(String, nullable=False, default=PaymentStatus.CREATED.value)
    method = Column(String)                                        # card | upi | netbanking | wallet
    description = Column(String)
    invoice_url = Column(String)
    paid_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
