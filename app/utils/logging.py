# =============================================
# File: app/utils/logging.py
# Purpose: Logging configuration (loguru file sink)
# =============================================

import os

from loguru import logger

_LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")

if _LOG_FILE:
    logger.add(_LOG_FILE, rotation="10 MB", level=os.getenv("LOG_LEVEL", "INFO").upper(), enqueue=True)
