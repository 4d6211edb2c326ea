# moviebook/database/payment_models.py
"""
Payment-related database models
"""
from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from moviebook.database.database import Base


class Payment(Base):
    """Payment transactions, linked 1:1 to a booking once it is confirmed"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(100), nullable=True, index=True)  # Razorpay order_id
    payment_id = Column(String(100), unique=True, nullable=False, index=True)  # Razorpay payment_id
    status = Column(String(50), nullable=False, default="CREATED")  # CREATED, PAID, FAILED, REFUNDED
    amount = Column(Float, nullable=False)  # rupees
    currency = Column(String(10), default="INR")
    provider = Column(String(30), nullable=False, default="razorpay")
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=True)
    meta = Column(JSON, nullable=True)
    razorpay_signature = Column(String(500), nullable=True)  # HMAC signature
    refund_id = Column(String(100), nullable=True)  # Razorpay refund id
    refunded_amount = Column(Float, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    booking = relationship("Booking")
