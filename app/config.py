# app/config.py
import os

# --- CORE SETTINGS ---
# Environment: 'development', 'testing' or 'production'
APP_ENV = os.environ.get("APP_ENV", "development")

IS_TESTING = os.environ.get("IS_TESTING", "false").lower() == "true"

# Security: Secret key for JWT signing
SECRET_KEY = os.environ.get("CRYOSTOCK_SECRET")
if not SECRET_KEY:
    if APP_ENV == "production":
        raise RuntimeError("CRYOSTOCK_SECRET environment variable is not set!")
    SECRET_KEY = "dev_only_secret"  # Fallback for local testing only

ALGORITHM = os.environ.get("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_DAYS = int(os.environ.get("ACCESS_TOKEN_EXPIRE_DAYS", 7))

# --- DATABASE ---
DATA_DIR = os.environ.get("DATA_DIR", "data")
DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{DATA_DIR}/cryostock.db")

# --- DOMAIN & NETWORKING ---
# Base URL used for generating deep-links in box label QR codes
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")

# Allowed hosts for production security
if APP_ENV == "production":
    ALLOWED_HOSTS = [h.strip() for h in os.environ.get("ALLOWED_HOSTS", "localhost").split(",")]
else:
    ALLOWED_HOSTS = ["*"]

# --- SEED ACCOUNT ---
DEFAULT_ADMIN_EMAIL = os.environ.get("DEFAULT_ADMIN_EMAIL", "admin@example.com")
DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "admin123")

# --- UPLOADS ---
# Maximum allowed spreadsheet upload size (default 5MB)
MAX_UPLOAD_SIZE = int(os.environ.get("MAX_UPLOAD_SIZE", 5 * 1024 * 1024))

# Whitelist of spreadsheet formats accepted by bulk inbound
ALLOWED_UPLOAD_EXTENSIONS = {'.xlsx', '.csv'}

# --- LOGGING ---
LOG_DIR = os.environ.get("LOG_DIR", "logs")

# --- INITIALIZATION ---
# Ensure required directories exist on the server
for folder in [DATA_DIR, LOG_DIR]:
    os.makedirs(folder, exist_ok=True)
