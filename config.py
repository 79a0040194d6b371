"""
Runtime configuration for the BagPackStories API.

Values come from the process environment, optionally seeded from a local
.env file.
"""
import os
import re

from dotenv import load_dotenv

load_dotenv()


def _bool(value: str, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_duration(value: str, default: int = 7 * 24 * 3600) -> int:
    """Convert '7d', '12h', '30m', '45s' or a bare number of seconds to seconds."""
    if not value:
        return default
    m = re.fullmatch(r"\s*(\d+)\s*([smhdw]?)\s*", str(value))
    if not m:
        return default
    amount, unit = int(m.group(1)), m.group(2) or "s"
    return amount * {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}[unit]


# -------------------------------------------------------------------
# Environment
# -------------------------------------------------------------------
NODE_ENV = os.getenv("NODE_ENV", os.getenv("APP_ENV", "development")).lower()
IS_PRODUCTION = NODE_ENV == "production"
IS_TEST = NODE_ENV == "test"
PORT = int(os.getenv("PORT", 8000))

# -------------------------------------------------------------------
# Database
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("MONGODB_URI") or os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "bagpackstories")

# -------------------------------------------------------------------
# Auth
# -------------------------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "supersecret-bagpackstories")
JWT_EXPIRE_SECONDS = parse_duration(os.getenv("JWT_EXPIRE", "7d"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
RESET_TOKEN_MINUTES = 10

# -------------------------------------------------------------------
# URLs / contact
# -------------------------------------------------------------------
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
APP_URL = os.getenv("APP_URL", FRONTEND_URL)
ADMIN_EMAILS = [e.strip() for e in os.getenv("ADMIN_EMAIL", "").split(",") if e.strip()]
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@bagpackstories.in")

# -------------------------------------------------------------------
# SMTP (Brevo)
# -------------------------------------------------------------------
SMTP_HOST = os.getenv("BREVO_SMTP_HOST", "smtp-relay.brevo.com")
SMTP_PORT = int(os.getenv("BREVO_SMTP_PORT", 587))
SMTP_SECURE = _bool(os.getenv("BREVO_SMTP_SECURE"), False)
SMTP_USERNAME = os.getenv("BREVO_USERNAME")
SMTP_PASSWORD = os.getenv("BREVO_PASSWORD")
FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@bagpackstories.in")
FROM_NAME = os.getenv("FROM_NAME", "BagPackStories")

# -------------------------------------------------------------------
# Newsletter scheduler
# -------------------------------------------------------------------
TIMEZONE = os.getenv("TIMEZONE", "Asia/Kolkata")
NEWSLETTER_CRON = os.getenv(
    "NEWSLETTER_CRON", "0 9 * * 1" if IS_PRODUCTION else "*/30 * * * *"
)
NEWSLETTER_BATCH_SIZE = 10
NEWSLETTER_BATCH_DELAY = float(os.getenv("NEWSLETTER_BATCH_DELAY", 1))

# -------------------------------------------------------------------
# Rate limiting
# -------------------------------------------------------------------
RATE_LIMIT_WINDOW_SECONDS = int(
    os.getenv("RATE_LIMIT_WINDOW_SECONDS", 15 * 60 if IS_PRODUCTION else 60 * 60)
)
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", 100 if IS_PRODUCTION else 1000))
RATE_LIMIT_ENABLED = _bool(os.getenv("RATE_LIMIT_ENABLED"), not IS_TEST)
# number of reverse proxies in front of the app whose X-Forwarded-For entries are trusted
TRUSTED_PROXY_HOPS = int(os.getenv("TRUSTED_PROXY_HOPS", 1))

# -------------------------------------------------------------------
# Cloudinary
# -------------------------------------------------------------------
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
