"""User model definitions."""

from sqlalchemy import Column, Integer, String
from scheduling_backend.database import Base


class User(Base):
    """Represents a provider or client account.

    Profiles live in a separate service; only what scheduling needs is kept.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String)  # provider/client
