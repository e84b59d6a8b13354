from qrmenu.models import Subscription, SubscriptionStatus

TRIAL_DAYS = 14


def _result(is_eligible, reason, message):
    return {"is_eligible": is_eligible, "reason": reason, "message": message}


def check_trial_eligibility(subscription: Subscription = None) -> dict:
    """Decide whether an owner may start a free trial, given their subscription if any."""
    if subscription is None:
        return _result(True, "eligible", f"Eligible for {TRIAL_DAYS}-day free trial")

    status = subscription.status
    if status == SubscriptionStatus.TRIALING.value:
        return _result(False, "current_trial", "Currently on free trial")

    if status == SubscriptionStatus.CANCELLED.value:
        return _result(
            False, "already_used", "Free trial has already been used. Payment required for subscription."
        )

    if status in (
        SubscriptionStatus.PENDING.value,
        SubscriptionStatus.HALTED.value,
        SubscriptionStatus.PAST_DUE.value,
    ):
        return _result(
            False,
            "pending",
            "Subscription is pending activation or requires attention. Please complete payment.",
        )

    if subscription.has_used_trial or subscription.trial_ends_at is not None:
        return _result(
            False, "already_used", "Free trial has already been used. Payment required for subscription."
        )

    if status == SubscriptionStatus.ACTIVE.value:
        return _result(False, "active_subscription", "Already have an active subscription")

    return _result(True, "eligible", f"Eligible for {TRIAL_DAYS}-day free trial")
