"""Point the app at a throwaway SQLite file before anything imports it."""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="emporium-tests-")

os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["USE_REDIS"] = "false"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ["RAZORPAY_WEBHOOK_IPS"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
