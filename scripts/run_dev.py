"""Development server runner.

Usage: python scripts/run_dev.py

Host and port come from APP_HOST / APP_PORT (see timerboard.config).
"""

import sys
import os

# Ensure src/ is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import uvicorn

from timerboard.config import get_settings

settings = get_settings()

uvicorn.run(
    "timerboard.app:create_app",
    host=settings.app_host,
    port=settings.app_port,
    reload=settings.app_env == "development",
    factory=True,
    reload_dirs=["src"],
)
