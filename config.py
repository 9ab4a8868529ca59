import os

from dotenv import load_dotenv
load_dotenv()

# Data store
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
# Restricted credentials for public catalog reads; privileged connection is used when unset
DATABASE_READONLY_URL = os.getenv("DATABASE_READONLY_URL")

# Identity
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
PWD_SALT = os.getenv("PWD_SALT", "salt")

# Payment gateway
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 15))

# Pricing
FREE_DELIVERY_THRESHOLD = 500
DELIVERY_FEE = 50

ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "GE")

# Images
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
IMAGE_BUCKET = os.getenv("IMAGE_BUCKET", "products")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
