import os
from pathlib import Path
from dotenv import load_dotenv
import requests

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

RAZORPAY_BASE_URL = "https://api.razorpay.com/v1"
TIMEOUT = 10


def _auth():
    key_id = os.getenv("RAZORPAY_KEY_ID")
    key_secret = os.getenv("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        raise RuntimeError(
            "Razorpay credentials are missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET"
        )
    return key_id, key_secret


def plan_id_for(plan: str) -> str:
    plans = {
        "basic": os.getenv("RAZORPAY_PLAN_BASIC", ""),
        "advance": os.getenv("RAZORPAY_PLAN_ADVANCE", ""),
    }
    if not plans["basic"] or not plans["advance"]:
        raise RuntimeError(
            "Razorpay plan IDs are not configured. Set RAZORPAY_PLAN_BASIC and RAZORPAY_PLAN_ADVANCE"
        )
    return plans[plan]


def create_subscription(plan_id: str, notes: dict, start_at: int = None, total_count: int = 12):
    body = {
        "plan_id": plan_id,
        "total_count": total_count,
        "customer_notify": 1,
        "notes": notes,
    }
    if start_at is not None:
        body["start_at"] = start_at

    response = requests.post(
        f"{RAZORPAY_BASE_URL}/subscriptions", json=body, auth=_auth(), timeout=TIMEOUT
    )
    response.raise_for_status()
    return response.json()


def cancel_subscription(subscription_id: str, at_cycle_end: bool = False):
    response = requests.post(
        f"{RAZORPAY_BASE_URL}/subscriptions/{subscription_id}/cancel",
        json={"cancel_at_cycle_end": 1 if at_cycle_end else 0},
        auth=_auth(),
        timeout=TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


def list_invoices(subscription_id: str, count: int = 50):
    response = requests.get(
        f"{RAZORPAY_BASE_URL}/invoices",
        params={"subscription_id": subscription_id, "count": count},
        auth=_auth(),
        timeout=TIMEOUT,
    )
    response.raise_for_status()
    data = response.json()
    if isinstance(data, dict):
        return data.get("items") or []
    return data if isinstance(data, list) else []
