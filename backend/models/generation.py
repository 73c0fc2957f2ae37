"""
Generation log model: one row per caption / content idea generation call.
"""

from sqlalchemy import Column, String, DateTime, Integer, JSON, Text

from .base import Base, BaseModel, generate_uuid, utcnow

class GenerationLog(Base, BaseModel):
    __tablename__ = "generation_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(128), nullable=False, index=True)
    request_id = Column(String(255), nullable=False)
    kind = Column(String(30), nullable=False)  # captions | content_ideas
    status = Column(String(20), nullable=False)  # success | fallback | failed
    error_kind = Column(String(50), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    request_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<GenerationLog {self.kind} {self.status}>"
