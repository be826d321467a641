from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# .env in the project root
PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=PROJECT_ROOT / ".env")

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{PROJECT_ROOT / 'clinicflow.sqlite'}")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

# In production: always set it in the environment
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

# Gates for the reporting screens
STATS_PIN = os.getenv("STATS_PIN", "1978")
EARNINGS_ACCESS_CODE = os.getenv("EARNINGS_ACCESS_CODE", "creative10")

# Denied appointments older than this are purged by the cleanup job
DENIED_RETENTION_DAYS = int(os.getenv("DENIED_RETENTION_DAYS", "7"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")
