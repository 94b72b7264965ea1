"""Availability model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, Time
from counseling.database import Base


class AvailabilityWindow(Base):
    """A recurring weekly interval during which a counselor takes appointments.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). ``position`` keeps
    the order in which the counselor declared the windows.
    """
    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
    )

    id = Column(Integer, primary_key=True)
    counselor_id = Column(Integer, ForeignKey("counselors.user_id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)
