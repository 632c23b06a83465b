"""
Savory - Centralized Configuration
===================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
import sys
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME")

    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 🔐 Security
# ==========================================
SECRET_KEY = os.getenv("SECRET_KEY", "")
ALGORITHM = "HS256"

if not SECRET_KEY:
    print("[WARNING] SECRET_KEY missing in .env: every auth token will be rejected")


# ==========================================
# 🎖️ Loyalty
# ==========================================
# points = floor(total_bill * rate * booster)
LOYALTY_POINT_RATE = Decimal(os.getenv("LOYALTY_POINT_RATE", "0.001"))
LOYALTY_EXP_RATE = Decimal(os.getenv("LOYALTY_EXP_RATE", "1"))

# Experience needed for each rank (Potential is the floor and has no threshold)
DEFAULT_RANK_THRESHOLDS = "BRONZE:1000000,SILVER:3000000,GOLD:6000000,PLATINUM:10000000,DIAMOND:20000000,EMERALD:50000000"
RANK_THRESHOLDS = os.getenv("RANK_THRESHOLDS", DEFAULT_RANK_THRESHOLDS)


# ==========================================
# 🎟️ Vouchers & Rewards
# ==========================================
REDEMPTION_CODE_PREFIX = os.getenv("REDEMPTION_CODE_PREFIX", "RW-")
REDEMPTION_CODE_LENGTH = int(os.getenv("REDEMPTION_CODE_LENGTH") or "8")
MAX_REDEEM_QUANTITY = int(os.getenv("MAX_REDEEM_QUANTITY") or "10")


# ==========================================
# 🧾 Orders
# ==========================================
VAT_PERCENT = Decimal(os.getenv("VAT_PERCENT", "0"))

# Bounded retries for lock/serialization conflicts on counters
TXN_MAX_RETRIES = int(os.getenv("TXN_MAX_RETRIES") or "3")


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:8000")
