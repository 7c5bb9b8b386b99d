"""
Project configuration for EcoTrust.

All tunables live here. Override any of them through environment
variables (or a .env file in the project root).

Usage:
    from ecotrust.config import DB_PATH, ORACLE_URL, RECALC_CONCURRENCY
"""

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")


# =============================================================================
# STORAGE
# =============================================================================

DB_PATH = os.getenv("DB_PATH", "data/ecotrust.db")
DB_BUSY_TIMEOUT = float(os.getenv("DB_BUSY_TIMEOUT", "10"))  # seconds

# Number of re-read/reapply/rewrite attempts after a VersionConflict
CONFLICT_RETRIES = int(os.getenv("CONFLICT_RETRIES", "1"))


# =============================================================================
# SCORE ORACLE
# =============================================================================

ORACLE_URL = os.getenv("ORACLE_URL", "http://localhost:8080/api/eco-score")
ORACLE_API_KEY = os.getenv("ORACLE_API_KEY", "")
ORACLE_TIMEOUT = float(os.getenv("ORACLE_TIMEOUT", "30"))  # per call, seconds


# =============================================================================
# RECALCULATION
# =============================================================================

RECALC_CONCURRENCY = int(os.getenv("RECALC_CONCURRENCY", "5"))
RECALC_MAX_CONCURRENCY = int(os.getenv("RECALC_MAX_CONCURRENCY", "10"))


# =============================================================================
# MODERATION / LOGGING
# =============================================================================

SYSTEM_ACTOR = os.getenv("SYSTEM_ACTOR", "system")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


# =============================================================================
# CATEGORIES (read-only, not env-overridable)
# =============================================================================

ACCOMMODATION_CATEGORIES = (
    "energy_efficiency",
    "waste_management",
    "water_conservation",
    "local_sourcing",
    "carbon_footprint",
)

RESTAURANT_CATEGORIES = (
    "local_sourcing",
    "organic_ingredients",
    "waste_reduction",
    "energy_efficiency",
    "packaging_sustainability",
)

# Stale-window aliases accepted by the last_calculated filter
STALENESS_ALIASES = {
    "week": 7,
    "month": 30,
}

# Placeholder scores per accommodation type, used before the first real
# calculation. Restaurants and unknown types fall back to 'hotel'.
DEFAULT_SCORES = {
    "eco-lodge": {
        "energy_efficiency": 4.0,
        "waste_management": 4.0,
        "water_conservation": 4.0,
        "local_sourcing": 4.0,
        "carbon_footprint": 4.0,
    },
    "resort": {
        "energy_efficiency": 3.0,
        "waste_management": 3.0,
        "water_conservation": 3.0,
        "local_sourcing": 3.0,
        "carbon_footprint": 2.0,
    },
    "hotel": {
        "energy_efficiency": 3.0,
        "waste_management": 3.0,
        "water_conservation": 3.0,
        "local_sourcing": 3.0,
        "carbon_footprint": 3.0,
    },
    "hostel": {
        "energy_efficiency": 3.0,
        "waste_management": 3.0,
        "water_conservation": 3.0,
        "local_sourcing": 3.0,
        "carbon_footprint": 3.0,
    },
    "guesthouse": {
        "energy_efficiency": 3.0,
        "waste_management": 3.0,
        "water_conservation": 3.0,
        "local_sourcing": 4.0,
        "carbon_footprint": 3.0,
    },
    "apartment": {
        "energy_efficiency": 3.0,
        "waste_management": 3.0,
        "water_conservation": 3.0,
        "local_sourcing": 3.0,
        "carbon_footprint": 3.0,
    },
    "restaurant": {
        "local_sourcing": 3.0,
        "organic_ingredients": 3.0,
        "waste_reduction": 3.0,
        "energy_efficiency": 3.0,
        "packaging_sustainability": 3.0,
    },
}
