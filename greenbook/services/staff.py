"""
Staff store helpers — upserts used by the sync phases plus read helpers
for the hierarchy and filter views.

Write helpers commit per call and propagate errors; the sync engine decides
whether a failure is per-record or phase-level.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from greenbook.config import MANAGER_CHAIN_MAX_DEPTH
from greenbook.database import get_session
from greenbook.models.reference import Department, JobTitle, Office
from greenbook.models.staff import Staff
from greenbook.sync.base import GreenbookError

logger = logging.getLogger('services.staff')

REFERENCE_MODELS = {
    'department': Department,
    'job_title': JobTitle,
    'office': Office,
}


class StaffNotFound(GreenbookError, LookupError):
    """No local staff row for an external id."""

    def __init__(self, external_id):
        self.external_id = external_id
        super().__init__(f"No staff row for external id {external_id}")


def _now():
    return datetime.now(timezone.utc)


def _parse_datetime(value):
    """Parse Graph ISO-8601 timestamps ('2021-03-01T00:00:00Z'). Bad values become None."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


def staff_fields_from_record(record):
    """Map a Graph user payload onto Staff column values (full overwrite set)."""
    phones = record.get('businessPhones') or []
    enabled = record.get('accountEnabled')
    return {
        'display_name': record.get('displayName') or '',
        'given_name': record.get('givenName'),
        'surname': record.get('surname'),
        'user_principal_name': record.get('userPrincipalName'),
        'email': record.get('mail') or record.get('userPrincipalName'),
        'job_title': record.get('jobTitle'),
        'department': record.get('department'),
        'office_location': record.get('officeLocation'),
        'mobile_phone': record.get('mobilePhone'),
        'business_phones': list(phones),
        'preferred_language': record.get('preferredLanguage'),
        'employee_id': record.get('employeeId'),
        'employee_type': record.get('employeeType'),
        'usage_location': record.get('usageLocation'),
        'account_enabled': True if enabled is None else bool(enabled),
        'employee_hire_date': _parse_datetime(record.get('employeeHireDate')),
        'created_date_time': _parse_datetime(record.get('createdDateTime')),
        'last_password_change_date_time': _parse_datetime(record.get('lastPasswordChangeDateTime')),
    }


# ── Writes (used by the sync phases) ──────────────────────────────────────────

def upsert_staff(record):
    """
    Insert or fully overwrite the staff row keyed by record['id'].

    Returns the local staff id. The local id is generated on first sighting
    and never changes afterwards.
    """
    external_id = record.get('id')
    if not external_id:
        raise ValueError('Directory record has no id')

    values = staff_fields_from_record(record)
    session = get_session()
    try:
        staff = session.query(Staff).filter_by(external_id=external_id).first()
        if staff is None:
            staff = Staff(external_id=external_id)
            session.add(staff)
        for key, value in values.items():
            setattr(staff, key, value)
        staff.last_sync_at = _now()
        session.commit()
        return staff.id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def upsert_reference(kind, name):
    """
    Create the reference row named `name` if absent; no-op if present.

    kind is one of 'department', 'job_title', 'office'. Returns the row id.
    """
    model = REFERENCE_MODELS[kind]
    session = get_session()
    try:
        row = session.query(model).filter_by(name=name).first()
        if row is not None:
            return row.id
        row = model(name=name)
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            # Concurrent run inserted the same name first
            session.rollback()
            row = session.query(model).filter_by(name=name).one()
        return row.id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _reference_id(session, model, name):
    if not name:
        return None
    return session.query(model.id).filter_by(name=name).scalar()


def link_staff_references(external_id, department=None, job_title=None, office=None):
    """
    Point a staff row at its department / job title / office rows by name.

    A name with no matching reference row links to NULL.
    Raises StaffNotFound when the staff row does not exist.
    """
    session = get_session()
    try:
        staff = session.query(Staff).filter_by(external_id=external_id).first()
        if staff is None:
            raise StaffNotFound(external_id)
        staff.department_id = _reference_id(session, Department, department)
        staff.job_title_id = _reference_id(session, JobTitle, job_title)
        staff.office_id = _reference_id(session, Office, office)
        staff.last_sync_at = _now()
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def set_manager(staff_external_id, manager_external_id):
    """
    Set (or clear) a staff row's manager pointer.

    A manager that has no local row yields NULL, never a dangling id.
    Returns True when a manager link was written, False when cleared.
    Raises StaffNotFound when the staff row itself does not exist.
    """
    session = get_session()
    try:
        staff = session.query(Staff).filter_by(external_id=staff_external_id).first()
        if staff is None:
            raise StaffNotFound(staff_external_id)

        manager_id = None
        if manager_external_id:
            manager_id = session.query(Staff.id).filter_by(external_id=manager_external_id).scalar()
            if manager_id is None:
                logger.info("Manager %s of %s not synced locally, clearing link",
                            manager_external_id, staff_external_id)

        staff.manager_id = manager_id
        staff.last_sync_at = _now()
        session.commit()
        return manager_id is not None
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ── Reads ─────────────────────────────────────────────────────────────────────

def get_staff(staff_id):
    session = get_session()
    try:
        staff = session.get(Staff, staff_id)
        return staff.to_dict() if staff else None
    finally:
        session.close()


def get_staff_by_external_id(external_id):
    session = get_session()
    try:
        staff = session.query(Staff).filter_by(external_id=external_id).first()
        return staff.to_dict() if staff else None
    finally:
        session.close()


def _walk_managers(session, staff, max_depth):
    chain = []
    seen = {staff.id}
    current = staff
    while current.manager_id and len(chain) < max_depth:
        if current.manager_id in seen:
            break
        manager = session.get(Staff, current.manager_id)
        if manager is None:
            break
        chain.append(manager)
        seen.add(manager.id)
        current = manager
    return chain


def get_manager_chain(staff_id, max_depth=MANAGER_CHAIN_MAX_DEPTH):
    """
    Managers above a staff member, nearest first.

    Stops after max_depth hops or when the chain loops back on itself;
    truncation is silent.
    """
    session = get_session()
    try:
        staff = session.get(Staff, staff_id)
        if staff is None:
            return []
        return [m.to_dict() for m in _walk_managers(session, staff, max_depth)]
    finally:
        session.close()


def get_staff_hierarchy(staff_id):
    """Staff row with its manager chain and direct reports, or None."""
    session = get_session()
    try:
        staff = session.get(Staff, staff_id)
        if staff is None:
            return None
        chain = _walk_managers(session, staff, MANAGER_CHAIN_MAX_DEPTH)
        reports = (
            session.query(Staff)
            .filter(Staff.manager_id == staff.id, Staff.id != staff.id)
            .order_by(Staff.display_name)
            .all()
        )
        return {
            'staff': staff.to_dict(),
            'manager': chain[0].to_dict() if chain else None,
            'manager_chain': [m.to_dict() for m in chain],
            'direct_reports': [r.to_dict() for r in reports],
        }
    finally:
        session.close()


def get_filter_options():
    """Sorted reference names for directory filter dropdowns."""
    session = get_session()
    try:
        return {
            'departments': [n for (n,) in session.query(Department.name).order_by(Department.name)],
            'job_titles': [n for (n,) in session.query(JobTitle.name).order_by(JobTitle.name)],
            'offices': [n for (n,) in session.query(Office.name).order_by(Office.name)],
        }
    finally:
        session.close()


def count_totals():
    session = get_session()
    try:
        return {
            'staff': session.query(Staff).count(),
            'departments': session.query(Department).count(),
            'job_titles': session.query(JobTitle).count(),
            'offices': session.query(Office).count(),
        }
    finally:
        session.close()
