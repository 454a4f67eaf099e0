"""
Reference-Data Sync — derive department, job title and office names from
the directory snapshot and make sure each has a reference row.
"""
from greenbook.services.staff import upsert_reference
from greenbook.sync.base import SyncPhase

# record field → reference kind
_SOURCE_FIELDS = [
    ('department', 'department'),
    ('jobTitle', 'job_title'),
    ('officeLocation', 'office'),
]


def distinct_reference_names(records):
    """
    Scan records once and collect non-empty names per reference kind.

    Returns {'department': [...], 'job_title': [...], 'office': [...]},
    each deduplicated in first-seen order.
    """
    names = {kind: [] for _, kind in _SOURCE_FIELDS}
    seen = {kind: set() for _, kind in _SOURCE_FIELDS}
    for record in records:
        for field_name, kind in _SOURCE_FIELDS:
            value = record.get(field_name)
            if isinstance(value, str):
                value = value.strip()
            if not value or value in seen[kind]:
                continue
            seen[kind].add(value)
            names[kind].append(value)
    return names


class ReferenceDataSyncPhase(SyncPhase):
    """Units of work are (kind, name) pairs, not users."""
    kind = 'reference_data'

    def units(self, records):
        names = distinct_reference_names(records)
        return [(kind, name) for _, kind in _SOURCE_FIELDS for name in names[kind]]

    def apply(self, unit):
        kind, name = unit
        upsert_reference(kind, name)

    def describe(self, unit):
        kind, name = unit
        return f"{kind} '{name}'"
