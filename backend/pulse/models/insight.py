from sqlalchemy import Column, ForeignKey, JSON, Integer, String, DateTime, Uuid
from datetime import datetime
from ..core.db import Base

class Insight(Base):
    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Uuid, ForeignKey("report_jobs.id"), index=True, nullable=False)
    output_json = Column(JSON, nullable=False)
    model = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
