"""
Contraindication Alert Engine - Configuration Settings
"""
import os
from pathlib import Path

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"

# Reference catalog (JSON file, CSV directory or Excel workbook)
CATALOG_PATH = os.getenv("CATALOG_PATH", str(DATA_DIR / "sample_catalog.json"))
CONDITION_KEYWORDS_PATH = os.getenv(
    "CONDITION_KEYWORDS_PATH", str(DATA_DIR / "condition_keywords.json")
)

# Acknowledgement ledger
LEDGER_DATABASE_URL = os.getenv("LEDGER_DATABASE_URL", "sqlite:///./acknowledgements.db")

# Practice-management system (reference tables + intake answers)
PRACTICE_API_URL = os.getenv("PRACTICE_API_URL", "")
PRACTICE_API_KEY = os.getenv("PRACTICE_API_KEY", "")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

# Collaborator reads
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "5"))
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "0.2"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "2.0"))

# Minimum wait before unavailable catalog tables are fetched again
CATALOG_RETRY_INTERVAL_SECONDS = float(os.getenv("CATALOG_RETRY_INTERVAL_SECONDS", "30"))

# Maximum number of per-individual alert streams kept in memory
MAX_ALERT_STREAMS = int(os.getenv("MAX_ALERT_STREAMS", "1000"))

# Quiescence window before a plan edit is evaluated
DEBOUNCE_SECONDS = float(os.getenv("DEBOUNCE_SECONDS", "0.3"))

# Severity ordering (lower rank sorts first)
SEVERITY_RANK = {
    "critical": 0,   # Do not combine - practitioner must acknowledge
    "warning": 1,    # Use with caution
    "info": 2,       # Awareness only
}

# Age thresholds (exclusive upper bounds, in years)
AGE_YOUNG_CHILD = 6
AGE_CHILD = 12

# API Settings
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
API_TITLE = "Contraindication Alert Engine"
API_VERSION = "1.0.0"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
