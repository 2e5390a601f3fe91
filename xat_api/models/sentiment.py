from sqlalchemy import (
    Column,
    Numeric,
    String,
    Text,
    DateTime,
)
from .base import Base
from .chat import new_uuid, utcnow


class SentimentAnalysis(Base):
    __tablename__ = "sentiment_analysis"

    id = Column(String(36), primary_key=True, index=True, default=new_uuid)
    text = Column(Text, nullable=False)
    score = Column(Numeric(4, 2), nullable=False)  # clamped to [0, 10]
    sentiment = Column(String(20), nullable=False)
    model = Column(String(100), nullable=False)
    raw_response = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
