"""Rotation data model.

Run-scoped records passed between the directory, the state machine and the
orchestrator. None of these types ever hold secret values.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..exceptions import ErrorKind


class RotationMode(str, Enum):
    """How the new credential is obtained. Chosen once per batch."""

    ADOPT_EXISTING = "adopt-existing"  # Platform adopts the directory's current password
    SET_NEW = "set-new"  # New password written to directory and platform


class RotationState(str, Enum):
    """Lifecycle states of a single account rotation."""

    PENDING = "pending"
    CONFIRMING = "confirming"
    APPLYING = "applying"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {RotationState.SUCCEEDED, RotationState.FAILED, RotationState.SKIPPED}
)


class PropagationStatus(str, Enum):
    """Result of the post-batch propagation step."""

    NOT_ATTEMPTED = "not_attempted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ManagedAccount:
    """Read-only snapshot of a directory account."""

    identifier: str  # Directory-qualified username, e.g. CONTOSO\svc-farm
    status: str = "active"
    last_rotated_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        """Case-insensitive identity used for matching and ordering."""
        return self.identifier.casefold()

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "status": self.status,
            "last_rotated_at": self.last_rotated_at.isoformat() if self.last_rotated_at else None,
        }


@dataclass(frozen=True)
class RotationRequest:
    """Work item for one account in one run."""

    account: ManagedAccount
    mode: RotationMode
    require_confirmation: bool = False


@dataclass(frozen=True)
class RotationOutcome:
    """Terminal result for one account. Never mutated after creation."""

    account_id: str
    state: RotationState
    started_at: datetime
    finished_at: datetime
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    manual_remediation: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == RotationState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state == RotationState.FAILED

    @property
    def skipped(self) -> bool:
        return self.state == RotationState.SKIPPED

    def to_dict(self) -> dict:
        """Convert to report-safe dictionary."""
        return {
            "account_id": self.account_id,
            "state": self.state.value,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_detail": self.error_detail,
            "manual_remediation": self.manual_remediation,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class BatchSummary:
    """Aggregate of all outcomes in a run.

    Outcomes are kept sorted by account identifier so reports are
    reproducible regardless of completion order.
    """

    mode: Optional[RotationMode] = None
    outcomes: list[RotationOutcome] = field(default_factory=list)
    propagation_status: PropagationStatus = PropagationStatus.NOT_ATTEMPTED
    propagation_warning: Optional[str] = None
    aborted: bool = False

    def __post_init__(self):
        self.outcomes = sorted(self.outcomes, key=lambda o: o.account_id.casefold())

    @property
    def any_succeeded(self) -> bool:
        return any(o.succeeded for o in self.outcomes)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def manual_remediation_count(self) -> int:
        return sum(1 for o in self.outcomes if o.manual_remediation)

    @property
    def is_empty(self) -> bool:
        return not self.outcomes

    def counts(self) -> dict[str, int]:
        return {
            "succeeded": self.succeeded_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "manual_remediation_needed": self.manual_remediation_count,
        }

    def exit_code(self) -> int:
        """Process exit code for this run.

        0: every account succeeded or was skipped, propagation (if attempted) ok
        1: one or more accounts failed, or the run was aborted; an abort
           takes precedence over 0 even if no outcome is Failed
        3: all rotations ok but propagation failed
        Exit code 2 (batch-fatal) never produces a summary.
        """
        if self.failed_count or self.aborted:
            return 1
        if self.propagation_status == PropagationStatus.FAILED:
            return 3
        return 0

    def to_dict(self) -> dict:
        """Convert to report-safe dictionary (no secrets)."""
        return {
            "mode": self.mode.value if self.mode else None,
            "counts": self.counts(),
            "any_succeeded": self.any_succeeded,
            "aborted": self.aborted,
            "propagation": {
                "status": self.propagation_status.value,
                "warning": self.propagation_warning,
            },
            "exit_code": self.exit_code(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
