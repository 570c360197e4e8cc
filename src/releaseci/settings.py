from __future__ import annotations
import os

CACHE_DIR = os.environ.get("RELEASECI_CACHE_DIR", ".releaseci/cache")
RUN_DIR = os.environ.get("RELEASECI_RUN_DIR", ".releaseci/runs")
RELEASE_DIR = os.environ.get("RELEASECI_RELEASE_DIR", ".releaseci/releases")
RELEASE_API = os.environ.get("RELEASECI_RELEASE_API")
RELEASE_TOKEN = os.environ.get("RELEASECI_RELEASE_TOKEN")
TUNNEL_URL = os.environ.get("RELEASECI_TUNNEL_URL")
WORKERS = int(os.environ["RELEASECI_WORKERS"]) if os.environ.get("RELEASECI_WORKERS") else None
DEFAULT_WORKFLOW = "releaseci_workflow.py"
