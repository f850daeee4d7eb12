from sqlalchemy import Column, String, DateTime, Uuid
from datetime import datetime
import uuid
from ..core.db import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
