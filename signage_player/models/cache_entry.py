from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from signage_player.db import Base


class CacheEntry(Base):
    __tablename__ = "cache_entry"
    key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)  # JSON
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)  # NULL = never expires (device snapshot)
