import os

# JWT Config
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.sqlite")
PAGE_SIZE = 12
SEED_PRODUCTS = os.getenv("SEED_PRODUCTS", "1").lower() not in ("0", "false", "no")

# Accounts
ADMIN_EMAILS = {e.strip() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()}
DEFAULT_AVATAR = os.getenv("DEFAULT_AVATAR", "/static/profile.jpg")

# Server
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Client adapters
SHOP_BACKEND = os.getenv("SHOP_BACKEND", "http")
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 10))
LOCAL_STORAGE_PATH = os.getenv("LOCAL_STORAGE_PATH") or None
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")
MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "/media")


def normalize_email(email: str) -> str:
    # Same rule as EmailStr: the domain is case-insensitive, the local part is not.
    local, at, domain = email.strip().rpartition("@")
    return f"{local}@{domain.lower()}" if at else email.strip()


def role_for_email(email: str) -> str:
    admins = {normalize_email(e) for e in ADMIN_EMAILS}
    return "ADMIN" if normalize_email(email) in admins else "USER"
