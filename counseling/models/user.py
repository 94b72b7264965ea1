"""User model definitions."""

import enum

from sqlalchemy import Column, Integer, String
from counseling.database import Base


class Role(str, enum.Enum):
    STUDENT = 'student'
    COUNSELOR = 'counselor'
    ADMIN = 'admin'
    # Scheduled jobs acting on behalf of the platform, never a real login.
    SYSTEM = 'system'


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
    role = Column(String)  # student/counselor/admin
