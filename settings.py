import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ecommerce")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))
JWT_COOKIE_EXPIRE_DAYS = int(os.getenv("JWT_COOKIE_EXPIRE_DAYS", "7"))
COOKIE_SECURE = _flag("COOKIE_SECURE")

RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@ecommerce.com")
FROM_NAME = os.getenv("FROM_NAME", "E-Shop")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ENABLE_SEED = _flag("ENABLE_SEED")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@shop.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")


def setup_logging():
    """Configure the root logger once for the whole process."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s",
    )
