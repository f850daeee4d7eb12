from sqlalchemy import Column, String, JSON, Enum, DateTime, Integer, ForeignKey, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base

class JobStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING

class ReportJob(Base):
    __tablename__ = "report_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    query_json = Column(JSON, nullable=False)  # {query, sources, filters}
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.RUNNING)
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    total_results = Column(Integer, nullable=False, default=0)
    error_message = Column(String, nullable=True)

    # Set once by the notification guard, never cleared
    email_sent_at = Column(DateTime, nullable=True)

    share_token = Column(String(64), nullable=True, unique=True)
    share_token_created_at = Column(DateTime, nullable=True)
    share_token_expires_at = Column(DateTime, nullable=True)

    # Cached comment enrichment: [{parent_id, platform, comments: [...]}]
    top_post_comments_json = Column(JSON, nullable=True)
