import os

# Set DATABASE_URL and DATABASE_NAME in your environment.
# Example:
# DATABASE_URL=mongodb://localhost:27017
# DATABASE_NAME=ethio_shop
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

API_URL = os.getenv("API_URL", "http://localhost:8000")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3003")

CHAPA_SECRET_KEY = (os.getenv("CHAPA_SECRET_KEY") or "").strip()
CHAPA_BASE_URL = os.getenv("CHAPA_BASE_URL", "https://api.chapa.co/v1")
CHAPA_LOGO_URL = os.getenv("CHAPA_LOGO_URL", "https://chapa.link/asset/images/chapa_swirl.svg")

TELEBIRR_APP_ID = os.getenv("TELEBIRR_APP_ID")
TELEBIRR_APP_KEY = os.getenv("TELEBIRR_APP_KEY")
TELEBIRR_MERCHANT_CODE = os.getenv("TELEBIRR_MERCHANT_CODE")

EXCHANGE_RATE_API_URL = os.getenv("EXCHANGE_RATE_API_URL", "https://api.exchangerate-api.com/v4/latest")

BASE_CURRENCY = os.getenv("BASE_CURRENCY", "ETB")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
