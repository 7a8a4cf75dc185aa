"""
config.py — Environment-driven settings for QuickDrop.

Values are read once at import time from the process environment (and a
local .env file when present).
"""

import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./quickdrop.db")

# ─── Blob storage ────────────────────────────────────────────
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "http://localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ROOT_USER", "admin")
MINIO_SECRET_KEY = os.getenv("MINIO_ROOT_PASSWORD", "StrongPassword123")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "quickdrop")
USE_MINIO = os.getenv("USE_MINIO", "false").lower() == "true"
LOCAL_UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

# ─── Share lifecycle ─────────────────────────────────────────
SHARE_TTL_MINUTES = int(os.getenv("SHARE_TTL_MINUTES", "10"))
CODE_LENGTH = int(os.getenv("CODE_LENGTH", "6"))
CODE_MAX_ATTEMPTS = int(os.getenv("CODE_MAX_ATTEMPTS", "5"))
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "100"))
MAX_FILE_SIZE = MAX_FILE_SIZE_MB * 1024 * 1024

# ─── Reaper ──────────────────────────────────────────────────
REAPER_ENABLED = os.getenv("REAPER_ENABLED", "true").lower() == "true"
REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
