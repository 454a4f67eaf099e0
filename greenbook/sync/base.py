"""
Sync engine contracts.

Every phase executor subclasses SyncPhase and returns a PhaseResult; the
orchestrator only sees that uniform interface. SyncOptions is the typed
form of the four phase switches callers (API, scheduler, CLI) pass in.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Iterable, List, Optional

CANCELLED_MESSAGE = 'Sync was cancelled by user'


# ── Exceptions ────────────────────────────────────────────────────────────────

class GreenbookError(Exception):
    """Base class for all package errors."""


class SyncCancelled(GreenbookError):
    """Raised at a checkpoint once an operator has cancelled the run."""

    def __init__(self, run_id):
        self.run_id = run_id
        super().__init__(f"Sync run {run_id} was cancelled")


class InvalidSyncOptions(GreenbookError, ValueError):
    """Raised when a sync option set cannot be parsed or selects nothing."""


# ── Options ───────────────────────────────────────────────────────────────────

# camelCase keys are still sent by older clients and stored schedules
_OPTION_ALIASES = {
    'users': 'users',
    'reference_data': 'reference_data',
    'referenceData': 'reference_data',
    'hierarchy': 'hierarchy',
    'link_references': 'link_references',
    'linkReferences': 'link_references',
}


@dataclass(frozen=True)
class SyncOptions:
    """Which phases a selective sync should run."""
    users: bool = False
    reference_data: bool = False
    hierarchy: bool = False
    link_references: bool = False

    @classmethod
    def all(cls) -> 'SyncOptions':
        return cls(users=True, reference_data=True, hierarchy=True, link_references=True)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SyncOptions':
        """
        Parse options from a JSON-style dict.

        Accepts snake_case or camelCase keys. Unknown keys and non-boolean
        values raise InvalidSyncOptions.
        """
        if data is None:
            return cls()
        if isinstance(data, SyncOptions):
            return data
        if not isinstance(data, dict):
            raise InvalidSyncOptions('Sync options must be an object')

        values = {}
        for key, value in data.items():
            name = _OPTION_ALIASES.get(key)
            if name is None:
                raise InvalidSyncOptions(f"Unknown sync option: {key}")
            if not isinstance(value, bool):
                raise InvalidSyncOptions(f"Sync option '{key}' must be true or false")
            values[name] = value
        return cls(**values)

    def merge(self, other: 'SyncOptions') -> 'SyncOptions':
        """Union of two option sets."""
        return SyncOptions(**{f.name: getattr(self, f.name) or getattr(other, f.name) for f in fields(self)})

    def any_selected(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def needs_directory(self) -> bool:
        """True when the run must page through the directory first."""
        return self.users or self.hierarchy or self.reference_data

    def to_dict(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# ── Results ───────────────────────────────────────────────────────────────────

@dataclass
class PhaseResult:
    """Outcome of one phase execution (mirrors its SyncLog row)."""
    run_id: str
    kind: str
    status: str
    records_processed: int = 0
    records_failed: int = 0
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'kind': self.kind,
            'status': self.status,
            'records_processed': self.records_processed,
            'records_failed': self.records_failed,
            'message': self.message,
        }


@dataclass
class SyncResults:
    """Outcome of a top-level run: its own status plus one result per phase that ran."""
    run_id: str
    kind: str
    status: str = 'running'
    message: Optional[str] = None
    phases: Dict[str, PhaseResult] = field(default_factory=dict)

    @property
    def users(self) -> Optional[PhaseResult]:
        return self.phases.get('users')

    @property
    def reference_data(self) -> Optional[PhaseResult]:
        return self.phases.get('reference_data')

    @property
    def link_references(self) -> Optional[PhaseResult]:
        return self.phases.get('link_references')

    @property
    def hierarchy(self) -> Optional[PhaseResult]:
        return self.phases.get('hierarchy')

    @property
    def total_processed(self) -> int:
        return sum(p.records_processed for p in self.phases.values())

    @property
    def total_failed(self) -> int:
        return sum(p.records_failed for p in self.phases.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'kind': self.kind,
            'status': self.status,
            'message': self.message,
            'total_processed': self.total_processed,
            'total_failed': self.total_failed,
            'phases': {name: result.to_dict() for name, result in self.phases.items()},
        }


# ── Phase executor base ───────────────────────────────────────────────────────

def _chain_checks(outer: Optional[Callable[[], None]], own: Callable[[], None]) -> Callable[[], None]:
    """Poll the enclosing run first, then the phase's own row."""
    if outer is None:
        return own

    def check():
        outer()
        own()
    return check


class SyncPhase(ABC):
    """
    Base class for the four phase executors.

    Subclasses supply units() (what to loop over) and apply() (one write).
    execute() owns the shared skeleton: create the phase run, loop with
    cancellation checkpoints around every write, isolate per-record failures,
    and finalize the run row.

    Each checkpoint polls the caller's check_cancelled (if given) and the
    phase's own run row, so cancelling either the top-level run or just this
    phase stops the loop.
    """
    kind: str = ''

    def units(self, records: Iterable[Any]) -> List[Any]:
        """Units of work derived from the phase input. Default: one per record."""
        return list(records)

    @abstractmethod
    def apply(self, unit: Any) -> None:
        """Write one unit to the store. Raise to count it as failed."""
        ...

    def describe(self, unit: Any) -> str:
        """Short label for a unit, used in failure logs."""
        return str(unit)

    def execute(self, records: Iterable[Any], parent_run_id: Optional[str] = None,
                check_cancelled: Optional[Callable[[], None]] = None) -> PhaseResult:
        from greenbook.sync import run_log

        run_id = run_log.create_run(self.kind, parent_run_id=parent_run_id)
        check_cancelled = _chain_checks(check_cancelled, run_log.CancellationMonitor(run_id))

        log = logging.getLogger(f'sync.{self.kind}')
        processed = 0
        failed = 0

        try:
            units = self.units(records)
            log.info("Phase '%s' started (run %s, %d units)", self.kind, run_id, len(units),
                     extra={'run_id': run_id})

            for unit in units:
                check_cancelled()
                try:
                    self.apply(unit)
                except SyncCancelled:
                    raise
                except Exception as e:
                    failed += 1
                    run_log.increment_counters(run_id, failed=1)
                    log.warning("Phase '%s' failed on %s: %s", self.kind, self.describe(unit), e,
                                extra={'run_id': run_id})
                    continue
                check_cancelled()
                processed += 1
                run_log.increment_counters(run_id, processed=1)

        except SyncCancelled:
            run_log.finalize_run(run_id, 'cancelled', message=CANCELLED_MESSAGE)
            log.info("Phase '%s' cancelled after %d processed, %d failed", self.kind, processed, failed,
                     extra={'run_id': run_id})
            raise
        except Exception as e:
            run_log.finalize_run(run_id, 'error', message=str(e))
            log.error("Phase '%s' aborted: %s", self.kind, e, exc_info=True, extra={'run_id': run_id})
            raise

        status = run_log.status_for_counts(processed, failed)
        run_log.finalize_run(run_id, status)
        log.info("Phase '%s' finished: %s (%d processed, %d failed)", self.kind, status, processed, failed,
                 extra={'run_id': run_id})
        return PhaseResult(
            run_id=run_id,
            kind=self.kind,
            status=status,
            records_processed=processed,
            records_failed=failed,
        )
