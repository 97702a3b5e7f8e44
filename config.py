"""
Application configuration, read from the environment once at import time.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# Delivery inside the home city is free, everywhere else costs a flat fee.
HOME_CITY = os.getenv("HOME_CITY", "თბილისი")
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", "7"))

FLITT_MERCHANT_ID = os.getenv("FLITT_MERCHANT_ID", "4055351")
FLITT_SECRET_KEY = os.getenv("FLITT_SECRET_KEY", "")
FLITT_API_URL = os.getenv("FLITT_API_URL", "https://pay.flitt.com/api/checkout/url")
PAYMENT_CURRENCY = "GEL"
PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL", "https://lifestore.ge/api/payment/callback")
PAYMENT_RESPONSE_URL = os.getenv("PAYMENT_RESPONSE_URL", "https://lifestore.ge/payment/success")
PAYMENT_TIMEOUT = float(os.getenv("PAYMENT_TIMEOUT", "30"))

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))

# Unpaid website orders are cancelled after this many minutes.
ORDER_EXPIRY_MINUTES = int(os.getenv("ORDER_EXPIRY_MINUTES", "30"))
CLEANUP_SECRET_TOKEN = os.getenv("CLEANUP_SECRET_TOKEN", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
