"""
Application configuration and settings
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Database Configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./moviebook.db")

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "")
SEAT_LOCK_PREFIX = os.getenv("SEAT_LOCK_PREFIX", "moviebook")
SHOWTIME_LOCK_TTL_MS = int(os.getenv("SHOWTIME_LOCK_TTL_MS", "5000"))  # 5 seconds default

# Booking lifecycle
HOLD_DURATION_MINUTES = int(os.getenv("HOLD_DURATION_MINUTES", "15"))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))  # 5 minutes
SWEEPER_ENABLED = os.getenv("SWEEPER_ENABLED", "true").lower() in ("1", "true", "yes")
CANCELLATION_CUTOFF_HOURS = float(os.getenv("CANCELLATION_CUTOFF_HOURS", "2"))
REFUND_RATE = float(os.getenv("REFUND_RATE", "0.9"))  # flat 10% cancellation fee
MAX_SEATS_PER_BOOKING = int(os.getenv("MAX_SEATS_PER_BOOKING", "10"))
SHOW_TIMEZONE = os.getenv("SHOW_TIMEZONE", "UTC")

# Auth Configuration (tokens are issued elsewhere, only verified here)
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# Razorpay Configuration
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "razorpay")  # razorpay | fallback
CURRENCY = os.getenv("CURRENCY", "INR")

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
    ).split(",")
    if origin.strip()
]


class Settings:
    PROJECT_NAME: str = "Moviebook Booking API"
    VERSION: str = "1.0.0"
    DATABASE_URL = DATABASE_URL
    REDIS_URL = REDIS_URL
    SEAT_LOCK_PREFIX = SEAT_LOCK_PREFIX
    SHOWTIME_LOCK_TTL_MS = SHOWTIME_LOCK_TTL_MS
    HOLD_DURATION_MINUTES = HOLD_DURATION_MINUTES
    SWEEP_INTERVAL_SECONDS = SWEEP_INTERVAL_SECONDS
    SWEEPER_ENABLED = SWEEPER_ENABLED
    CANCELLATION_CUTOFF_HOURS = CANCELLATION_CUTOFF_HOURS
    REFUND_RATE = REFUND_RATE
    MAX_SEATS_PER_BOOKING = MAX_SEATS_PER_BOOKING
    SHOW_TIMEZONE = SHOW_TIMEZONE
    SECRET_KEY = SECRET_KEY
    ALGORITHM = ALGORITHM
    RAZORPAY_KEY_ID = RAZORPAY_KEY_ID
    RAZORPAY_KEY_SECRET = RAZORPAY_KEY_SECRET
    PAYMENT_GATEWAY = PAYMENT_GATEWAY
    CURRENCY = CURRENCY
    ALLOWED_ORIGINS = ALLOWED_ORIGINS


settings = Settings()
