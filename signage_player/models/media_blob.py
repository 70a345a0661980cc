from datetime import datetime
from sqlalchemy import Column, String, BigInteger, DateTime, LargeBinary
from signage_player.db import Base


class MediaBlob(Base):
    __tablename__ = "media_blob"
    id = Column(String(64), primary_key=True)
    payload = Column(LargeBinary, nullable=False)
    content_type = Column(String, nullable=True)
    size = Column(BigInteger, nullable=False, default=0)
    checksum = Column(String, nullable=True)
    cached_at = Column(DateTime, default=datetime.utcnow)
