"""
Staff model — one row per directory principal, keyed by its Graph object id.

Mirrored fields are fully overwritten on every user sync. Rows are never
deleted by the sync engine; disablement shows up as account_enabled=False.
"""
import uuid

from sqlalchemy import Column, Text, Boolean, DateTime, JSON, ForeignKey, Index
from sqlalchemy.sql import func

from greenbook.database import Base


class Staff(Base):
    __tablename__ = 'staff'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id = Column(Text, nullable=False, unique=True)   # Graph object id
    display_name = Column(Text, default='')
    given_name = Column(Text, nullable=True)
    surname = Column(Text, nullable=True)
    user_principal_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True, index=True)
    job_title = Column(Text, nullable=True)
    department = Column(Text, nullable=True)
    office_location = Column(Text, nullable=True)
    mobile_phone = Column(Text, nullable=True)
    business_phones = Column(JSON, default=list)
    preferred_language = Column(Text, nullable=True)
    employee_id = Column(Text, nullable=True)
    employee_type = Column(Text, nullable=True)
    usage_location = Column(Text, nullable=True)
    account_enabled = Column(Boolean, default=True)
    employee_hire_date = Column(DateTime(timezone=True), nullable=True)
    created_date_time = Column(DateTime(timezone=True), nullable=True)
    last_password_change_date_time = Column(DateTime(timezone=True), nullable=True)

    # Weak self-reference: no cascade, cycles possible in source data
    manager_id = Column(Text, ForeignKey('staff.id', ondelete='SET NULL'), nullable=True)

    department_id = Column(Text, ForeignKey('departments.id', ondelete='SET NULL'), nullable=True)
    job_title_id = Column(Text, ForeignKey('job_titles.id', ondelete='SET NULL'), nullable=True)
    office_id = Column(Text, ForeignKey('offices.id', ondelete='SET NULL'), nullable=True)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_staff_manager_id', 'manager_id'),
        Index('ix_staff_account_enabled', 'account_enabled'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'external_id': self.external_id,
            'display_name': self.display_name,
            'given_name': self.given_name,
            'surname': self.surname,
            'email': self.email,
            'job_title': self.job_title,
            'department': self.department,
            'office_location': self.office_location,
            'mobile_phone': self.mobile_phone,
            'business_phones': self.business_phones or [],
            'account_enabled': self.account_enabled,
            'manager_id': self.manager_id,
            'department_id': self.department_id,
            'job_title_id': self.job_title_id,
            'office_id': self.office_id,
            'last_sync_at': self.last_sync_at.isoformat() if self.last_sync_at else None,
        }
