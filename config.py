"""
Environment-driven settings for the registration portal.

Values are read once at import time.
"""
import os
from typing import Dict, List, Optional

PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Document database
DATABASE_BACKEND = os.getenv("DATABASE_BACKEND", "mongo").lower()
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "registration_portal")

# Object store
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET", "")
PRESIGN_TTL_SECONDS = int(os.getenv("PRESIGN_TTL_SECONDS", "3600"))

# Admission control; RATE_LIMIT is per client IP on /api routes
MAX_REQUEST_BYTES = int(os.getenv("MAX_REQUEST_BYTES", str(10 * 1024 * 1024)))
MAX_UPLOAD_FILES = int(os.getenv("MAX_UPLOAD_FILES", "3"))
RATE_LIMIT = os.getenv("RATE_LIMIT", "100/15minutes")

# Optional admin gate; unset means open
ADMIN_API_KEY: Optional[str] = os.getenv("ADMIN_API_KEY") or None

# Mail
EVENT_NAME = os.getenv("EVENT_NAME", "KMUN'25")
SMTP_SENDER_NAME = os.getenv("SMTP_SENDER_NAME", f"{EVENT_NAME} Team")
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", "30"))
SMTP_PROVIDER_NAMES = ("gmail", "outlook")
DEFAULT_SMTP_PROVIDER = "gmail"


def smtp_providers() -> Dict[str, dict]:
    """Read SMTP_{HOST,PORT,USER,PASS}_<PROVIDER> for every known provider."""
    providers = {}
    for name in SMTP_PROVIDER_NAMES:
        suffix = name.upper()
        providers[name] = {
            "host": os.getenv(f"SMTP_HOST_{suffix}", ""),
            "port": int(os.getenv(f"SMTP_PORT_{suffix}", "587")),
            "username": os.getenv(f"SMTP_USER_{suffix}"),
            "password": os.getenv(f"SMTP_PASS_{suffix}"),
            "timeout": SMTP_TIMEOUT,
        }
    return providers
