import os

# qrmenu.database refuses to import without DATABASE_URL; keep tests off any real .env values.
os.environ["DATABASE_URL"] = "sqlite:///./test_app.db"
os.environ["JWT_SECRET"] = "test_jwt_secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ["RAZORPAY_PLAN_BASIC"] = "plan_basic_test"
os.environ["RAZORPAY_PLAN_ADVANCE"] = "plan_advance_test"
