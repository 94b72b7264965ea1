"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    text,
)
from counseling.database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = 'scheduled'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no-show'


class AppointmentType(str, enum.Enum):
    INDIVIDUAL = 'individual'
    GROUP = 'group'
    EMERGENCY = 'emergency'


class Appointment(Base):
    """Represents a booked counseling session.

    ``start_time``/``end_time`` are denormalised from ``date``, ``time`` and
    ``duration_minutes`` so overlap checks can run as range queries.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("duration_minutes >= 15 AND duration_minutes <= 180", name="ck_appointments_duration"),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_appointments_rating"),
        # Backstop for two live bookings starting at the same minute.
        Index(
            "uq_appointments_counselor_slot",
            "counselor_id",
            "date",
            "time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    counselor_id = Column(Integer, ForeignKey("counselors.user_id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    appointment_type = Column(String, nullable=False, default=AppointmentType.INDIVIDUAL.value)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    notes = Column(String)
    student_notes = Column(String)
    counselor_notes = Column(String)
    location = Column(String)
    meeting_link = Column(String)
    rating = Column(Integer)
    feedback = Column(String)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)
