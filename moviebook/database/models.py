# moviebook/database/models.py
import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from moviebook.database.database import Base


class SeatCategory(str, enum.Enum):
    Premium = "Premium"
    Gold = "Gold"
    Platinum = "Platinum"


class HoldStatus(str, enum.Enum):
    blocked = "blocked"
    booked = "booked"
    # freed but not yet compacted
    available = "available"


class BookingStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    expired = "expired"


class RefundStatus(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"


# ==========================
# ✅ CATALOG MODELS (read-only to the booking core)
# ==========================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False, index=True)
    role = Column(String(50), default="user")
    created_at = Column(DateTime, default=datetime.utcnow)

    bookings = relationship("Booking", back_populates="user")


class Movie(Base):
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(150), nullable=False)
    synopsis = Column(Text, nullable=True)
    runtime = Column(Integer, nullable=True)
    language = Column(String(50), nullable=True)
    poster_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    showtimes = relationship("Showtime", back_populates="movie")


class Theatre(Base):
    __tablename__ = "theatres"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    city = Column(String(100), nullable=True)

    showtimes = relationship("Showtime", back_populates="theatre")


# ==========================
# ✅ SHOWTIME + SEAT INVENTORY
# ==========================
class Showtime(Base):
    __tablename__ = "showtimes"
    __table_args__ = (
        Index("ix_showtimes_movie_theatre_date", "movie_id", "theatre_id", "show_date"),
        Index("ix_showtimes_date_active", "show_date", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(Integer, ForeignKey("movies.id"), nullable=False)
    theatre_id = Column(Integer, ForeignKey("theatres.id"), nullable=False)
    screen_number = Column(Integer, nullable=False)
    screen_name = Column(String(100), nullable=True)
    show_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # "HH:MM", e.g. "10:00", "19:30"
    end_time = Column(String(5), nullable=True)
    language = Column(String(50), nullable=True)
    format = Column(String(20), nullable=False, default="2D")  # 2D, 3D, IMAX, IMAX 3D, 4DX
    seats_total = Column(Integer, nullable=False)
    seats_available = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    movie = relationship("Movie", back_populates="showtimes")
    theatre = relationship("Theatre", back_populates="showtimes")
    pricing = relationship("ShowtimePricing", back_populates="showtime", cascade="all, delete-orphan")
    holds = relationship("SeatHold", back_populates="showtime")


class ShowtimePricing(Base):
    __tablename__ = "showtime_pricing"
    __table_args__ = (UniqueConstraint("showtime_id", "category", name="uq_pricing_showtime_category"),)

    id = Column(Integer, primary_key=True, index=True)
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False)
    category = Column(Enum(SeatCategory), nullable=False)
    price = Column(Float, nullable=False)
    dynamic_enabled = Column(Boolean, nullable=False, default=False)
    weekend_multiplier = Column(Float, nullable=True)
    peak_enabled = Column(Boolean, nullable=False, default=False)
    peak_multiplier = Column(Float, nullable=True)  # e.g. 1.2 for 20% increase

    showtime = relationship("Showtime", back_populates="pricing")


class SeatHold(Base):
    """One row per held seat; a missing row means the seat is free."""
    __tablename__ = "seat_holds"
    # One hold per seat per showtime: the loser of a concurrent booking race is rejected here
    __table_args__ = (UniqueConstraint("showtime_id", "seat_id", name="uq_seat_hold_showtime_seat"),)

    id = Column(Integer, primary_key=True, index=True)
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False, index=True)
    seat_id = Column(String(10), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(Enum(HoldStatus), nullable=False, default=HoldStatus.blocked)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    showtime = relationship("Showtime", back_populates="holds")


# ==========================
# ✅ BOOKING MODEL
# ==========================
class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_user_status", "user_id", "status"),
        Index("ix_bookings_status_expires", "status", "expires_at"),
        Index("ix_bookings_showtime_status", "showtime_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_code = Column(String(40), unique=True, nullable=False, index=True)
    # denormalized at creation so history survives catalog edits
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    movie_id = Column(Integer, ForeignKey("movies.id"), nullable=False)
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False)
    theatre_id = Column(Integer, ForeignKey("theatres.id"), nullable=False)
    show_date = Column(Date, nullable=False)
    show_time = Column(String(5), nullable=False)
    total_amount = Column(Float, nullable=False)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.pending)
    expires_at = Column(DateTime, nullable=True)
    payment_reference = Column(String(100), nullable=True)
    qr_code = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    refund_amount = Column(Float, nullable=True)
    refund_status = Column(Enum(RefundStatus), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="bookings")
    movie = relationship("Movie")
    theatre = relationship("Theatre")
    showtime = relationship("Showtime")
    seats = relationship(
        "BookingSeat",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSeat.position",
    )

    @property
    def seat_ids(self):
        return [s.seat_id for s in self.seats]


class BookingSeat(Base):
    __tablename__ = "booking_seats"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    seat_id = Column(String(10), nullable=False)
    category = Column(Enum(SeatCategory), nullable=False)
    price = Column(Float, nullable=False)  # snapshot at booking time

    booking = relationship("Booking", back_populates="seats")


# ==========================
# ✅ SWEEPER MARKER
# ==========================
class SweepMarker(Base):
    __tablename__ = "sweep_markers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    last_run_at = Column(DateTime, nullable=True)
    next_run_at = Column(DateTime, nullable=True)
    last_expired_count = Column(Integer, nullable=False, default=0)
