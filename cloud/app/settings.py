from __future__ import annotations
import os

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ["REDIS_URL"]
LOCK_SECONDS = int(os.environ.get("RELEASE_LOCK_SECONDS", "60"))
LOCK_RETRIES = int(os.environ.get("RELEASE_LOCK_RETRIES", "20"))
API_TOKEN = os.environ.get("RELEASE_API_TOKEN")
PUBLIC_URL = os.environ.get("RELEASE_PUBLIC_URL", "").rstrip("/")
