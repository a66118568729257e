"""
Bokun Credential Store

Single-row table holding the vendor's Bokun API credentials and the global
sync marker. access_key and secret_key are stored Fernet-encrypted; rows
written before encryption was enabled may still hold plain text.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Boolean
from ..database import Base


class BokunConfig(Base):
    __tablename__ = "bokun_config"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Credentials (encrypted at rest)
    access_key = Column(Text, nullable=True)
    secret_key = Column(Text, nullable=True)
    vendor_id = Column(String(50), nullable=True)

    sync_enabled = Column(Boolean, default=False)

    # Global marker, advanced once per completed run
    last_sync = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<BokunConfig vendor={self.vendor_id} enabled={self.sync_enabled}>"
