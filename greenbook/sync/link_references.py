"""
Reference-Link Sync — point each staff row at its reference rows by name.
"""
from greenbook.services.staff import link_staff_references
from greenbook.sync.base import SyncPhase


def _name(value):
    if isinstance(value, str):
        value = value.strip()
    return value or None


class ReferenceLinkSyncPhase(SyncPhase):
    """
    One unit per directory record. Names without a reference row link to
    NULL; a user with no local staff row counts as failed.
    """
    kind = 'link_references'

    def apply(self, record):
        link_staff_references(
            record.get('id'),
            department=_name(record.get('department')),
            job_title=_name(record.get('jobTitle')),
            office=_name(record.get('officeLocation')),
        )

    def describe(self, record):
        return f"user {record.get('id') or '<no id>'}"
