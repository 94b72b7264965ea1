"""Counselor model definitions."""

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer
from sqlalchemy.orm import relationship

from counseling.core import config
from counseling.database import Base


class Counselor(Base):
    """Booking-related settings of a counselor, keyed by their user id."""
    __tablename__ = "counselors"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    is_accepting_bookings = Column(Boolean, default=True, nullable=False)
    max_sessions_per_day = Column(Integer, default=config.DEFAULT_MAX_SESSIONS_PER_DAY, nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    total_sessions = Column(Integer, default=0, nullable=False)

    user = relationship("User")