"""
SyncSchedule — a named cron schedule that launches a sync run.
"""
import uuid

from sqlalchemy import Column, Text, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from greenbook.database import Base


class SyncSchedule(Base):
    __tablename__ = 'sync_schedules'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    sync_type = Column(Text, nullable=False, default='incremental')  # incremental | full | selective
    cron_expression = Column(Text, nullable=False)                   # 5-field crontab, UTC
    sync_options = Column(JSON, default=dict)
    enabled = Column(Boolean, nullable=False, default=True)
    last_run = Column(DateTime(timezone=True), nullable=True)
    next_run = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'sync_type': self.sync_type,
            'cron_expression': self.cron_expression,
            'sync_options': self.sync_options or {},
            'enabled': self.enabled,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'next_run': self.next_run.isoformat() if self.next_run else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
