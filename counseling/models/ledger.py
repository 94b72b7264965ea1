"""Booking ledger guard model."""

from sqlalchemy import Column, Date, ForeignKey, Integer
from counseling.database import Base


class CounselorDay(Base):
    """Per counselor-date version counter.

    Every booking commit bumps ``version``, which write-locks the row until
    that transaction ends, so bookings for one counselor and date commit one
    at a time.
    """
    __tablename__ = "counselor_days"

    counselor_id = Column(Integer, ForeignKey("counselors.user_id"), primary_key=True)
    date = Column(Date, primary_key=True)
    version = Column(Integer, default=0, nullable=False)
