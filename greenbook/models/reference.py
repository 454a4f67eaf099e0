"""
Reference tables derived from free-text staff fields.

Rows are created by upsert-by-name and never deleted by the sync engine.
"""
import uuid

from sqlalchemy import Column, Text, DateTime
from sqlalchemy.sql import func

from greenbook.database import Base


class Department(Base):
    __tablename__ = 'departments'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


class JobTitle(Base):
    __tablename__ = 'job_titles'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


class Office(Base):
    __tablename__ = 'offices'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {'id': self.id, 'name': self.name}
