"""
SyncLog — one row per sync run (top-level or phase).

Phase runs point at their top-level run through parent_run_id. Counters are
only ever incremented; status leaves 'running' exactly once.
"""
import uuid

from sqlalchemy import Column, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from greenbook.database import Base


def _iso(value):
    return value.isoformat() if value else None


class SyncLog(Base):
    __tablename__ = 'sync_logs'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='running')
    message = Column(Text, nullable=True)
    records_processed = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    parent_run_id = Column(Text, ForeignKey('sync_logs.id'), nullable=True)
    schedule_id = Column(Text, ForeignKey('sync_schedules.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_sync_logs_parent_run_id', 'parent_run_id'),
        Index('ix_sync_logs_status', 'status'),
        Index('ix_sync_logs_kind', 'kind'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'status': self.status,
            'message': self.message,
            'records_processed': self.records_processed or 0,
            'records_failed': self.records_failed or 0,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'parent_run_id': self.parent_run_id,
            'schedule_id': self.schedule_id,
        }
