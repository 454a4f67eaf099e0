"""
Hierarchy Sync — write manager links from (staff, manager) pairs.

The orchestrator resolves each user's manager against the directory first
(one get_manager call per user); this phase only touches the store.
"""
from collections import namedtuple

from greenbook.services.staff import set_manager
from greenbook.sync.base import GreenbookError, SyncPhase

# lookup_error is set when the manager could not be read from the directory
HierarchyPair = namedtuple('HierarchyPair', ['staff_external_id', 'manager_external_id', 'lookup_error'],
                           defaults=(None,))


class ManagerLookupFailed(GreenbookError):
    """The directory could not say who this user's manager is."""


class HierarchySyncPhase(SyncPhase):
    """
    A manager with no local row is logged and linked as NULL (processed).
    A staff external id with no local row counts as failed, and so does a
    pair whose manager lookup failed; its existing link is left untouched.
    """
    kind = 'hierarchy'

    def apply(self, pair):
        if pair.lookup_error:
            raise ManagerLookupFailed(f"Manager lookup failed: {pair.lookup_error}")
        set_manager(pair.staff_external_id, pair.manager_external_id)

    def describe(self, pair):
        return f"staff {pair.staff_external_id} (manager {pair.manager_external_id})"
