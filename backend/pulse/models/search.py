import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship

from ..core.db import Base


class Sentiment(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Search(Base):
    __tablename__ = "searches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    query_text = Column(Text, nullable=False)
    sources = Column(JSON, nullable=False, default=list)      # ["x", "youtube", ...]
    filters_json = Column(JSON, nullable=True)                # {time_filter, language}
    # At most one report per search
    report_id = Column(Uuid, ForeignKey("report_jobs.id"), nullable=True, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    posts = relationship("SearchPost", back_populates="search", order_by="SearchPost.id")


class SearchPost(Base):
    __tablename__ = "search_posts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    search_id = Column(Uuid, ForeignKey("searches.id"), index=True, nullable=False)
    post_id = Column(String, nullable=False)       # platform-native id
    text = Column(Text, nullable=False, default="")
    author = Column(String, nullable=False, default="")
    author_handle = Column(String, nullable=False, default="")
    platform = Column(String, nullable=False)      # "x", "youtube", "reddit", "tiktok", ...
    url = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=True)
    engagement = Column(JSON, nullable=True)       # {likes, comments, shares, views}
    sentiment = Column(Enum(Sentiment, values_callable=lambda e: [m.value for m in e]), nullable=True)

    search = relationship("Search", back_populates="posts")
