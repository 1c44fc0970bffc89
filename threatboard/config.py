"""Runtime paths and settings for the threat board."""
from __future__ import annotations

import os
from pathlib import Path

# -------------------------------------------------------------------
# Paths
# -------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent

# Workbooks picked up automatically when the server starts (start.sh convention)
DEFAULT_WORKBOOK = Path(
    os.getenv("THREATBOARD_WORKBOOK", BASE_DIR / "data.xlsx")
).expanduser()
DEFAULT_ASSET_WORKBOOK = Path(
    os.getenv("THREATBOARD_ASSETS", BASE_DIR / "assets.xlsx")
).expanduser()

# -------------------------------------------------------------------
# Web app
# -------------------------------------------------------------------
SECRET_KEY = os.getenv("THREATBOARD_SECRET_KEY", "dev-secret-change-later")
MAX_CONTENT_LENGTH = int(os.getenv("THREATBOARD_MAX_UPLOAD_MB", "50")) * 1024 * 1024
HOST = os.getenv("THREATBOARD_HOST", "127.0.0.1")
PORT = int(os.getenv("THREATBOARD_PORT", "8080"))

ALLOWED_EXTENSIONS = (".xlsx", ".xlsm")

# Remote workbook fetch
HTTP_TIMEOUT = float(os.getenv("THREATBOARD_HTTP_TIMEOUT", "15"))
