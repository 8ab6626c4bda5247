"""User model definitions."""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from campus_library.database import Base

USER_ROLES = ("student", "faculty", "librarian", "admin")
USER_STATUSES = ("active", "suspended", "inactive")

# Soft-deleted rows carry this status and are hidden from listings and stats.
DELETED_STATUS = "inactive"


class User(Base):
    """Represents a library patron or staff account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="student")  # see USER_ROLES
    status = Column(String, nullable=False, default="active")  # see USER_STATUSES
    university_id = Column(String, nullable=True)
    university_name = Column(String, nullable=True)
    department = Column(String, nullable=True)
    year_level = Column(String, nullable=True)
    course = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


# Columns an admin partial update may touch.
ADMIN_UPDATABLE_COLUMNS = frozenset({
    "full_name",
    "role",
    "status",
    "university_id",
    "university_name",
    "department",
    "phone",
    "avatar_url",
    "year_level",
    "course",
})

# Columns the account owner may change on their own profile.
PROFILE_UPDATABLE_COLUMNS = frozenset({"full_name", "email", "phone", "avatar_url"})
