"""
User Sync — upsert every directory user into the staff table.
"""
from greenbook.services.staff import upsert_staff
from greenbook.sync.base import SyncPhase


class UserSyncPhase(SyncPhase):
    """One unit per directory record; mirrored fields are fully overwritten."""
    kind = 'users'

    def apply(self, record):
        upsert_staff(record)

    def describe(self, record):
        return f"user {record.get('id') or '<no id>'} ({record.get('userPrincipalName') or record.get('displayName') or '?'})"
