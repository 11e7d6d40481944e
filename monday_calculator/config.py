"""
Configuration constants for the Monday Calculator service.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# monday.com app credentials
MONDAY_SIGNING_SECRET = os.getenv("MONDAY_SIGNING_SECRET", "")

# monday.com GraphQL API
MONDAY_API_URL = os.getenv("MONDAY_API_URL", "https://api.monday.com/v2")
MONDAY_API_VERSION = os.getenv("MONDAY_API_VERSION", "2024-04")
MONDAY_API_TIMEOUT = float(os.getenv("MONDAY_API_TIMEOUT", "30"))

# Calculation log storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./calculations.db")

# History defaults
ITEM_HISTORY_LIMIT = int(os.getenv("ITEM_HISTORY_LIMIT", "20"))
BOARD_HISTORY_LIMIT = int(os.getenv("BOARD_HISTORY_LIMIT", "50"))
ALL_HISTORY_LIMIT = int(os.getenv("ALL_HISTORY_LIMIT", "100"))

# Guardrails
MAX_HISTORY_LIMIT = int(os.getenv("MAX_HISTORY_LIMIT", "500"))
CALCULATE_RATE_LIMIT = os.getenv("CALCULATE_RATE_LIMIT", "60/minute")

# Logging
LOG_FILE = os.getenv("LOG_FILE", "calculations.log")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))

# Server
PORT = int(os.getenv("PORT", "8080"))

# Column types that store their value as {"value": "..."}
NUMERIC_COLUMN_TYPES = ["numeric", "numbers"]

DEFAULT_OPERATION = "multiplication"
