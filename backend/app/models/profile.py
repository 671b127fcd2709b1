from sqlalchemy import Column, String, DateTime
from datetime import datetime

from app.models.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)  # Auth user id
    full_name = Column(String(255), nullable=True)
    company = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
