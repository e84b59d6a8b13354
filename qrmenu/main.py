import json
import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Header, HTTPException
import structlog

from qrmenu.logger import configure_logging
from qrmenu.routes import router
from qrmenu.database import SessionLocal, init_db
from qrmenu.webhook_service import handle_event, verify_webhook_signature

# RAZORPAY_WEBHOOK_SECRET and friends may come from the project .env
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

configure_logging()
logger = structlog.get_logger()

app = FastAPI(title="QR Menu Billing Service")

app.include_router(router)

init_db()


@app.post("/webhooks/razorpay")
async def razorpay_webhook(request: Request, x_razorpay_signature: str = Header(None)):
    secret = os.getenv("RAZORPAY_WEBHOOK_SECRET")
    if not secret:
        logger.error("RAZORPAY_WEBHOOK_SECRET is not set, rejecting webhook")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    # The signature covers the exact bytes Razorpay sent, so verify before parsing.
    payload = await request.body()
    if not verify_webhook_signature(payload, x_razorpay_signature, secret):
        logger.warning("Razorpay webhook signature rejected")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    logger.info("Razorpay webhook received", event_type=event.get("event"))

    db = SessionLocal()
    try:
        return handle_event(db, event)
    except Exception:
        db.rollback()
        logger.exception("Razorpay webhook processing failed", event_type=event.get("event"))
        raise HTTPException(status_code=500, detail="Webhook handler failed")
    finally:
        db.close()
