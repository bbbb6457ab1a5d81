"""Per-resource apply and readiness outcomes."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

from kubestage.errors import KubeStageError, ResourceFailedError, ResourceTimedOutError
from kubestage.models.resources import ResourceKey


class ApplyOutcome(StrEnum):
    """Result of submitting a resource to the cluster."""

    APPLIED = "applied"
    ALREADY_EXISTS = "already-exists"
    FAILED = "failed"


class ApplyAction(StrEnum):
    """What the apply engine actually did to the cluster."""

    CREATED = "created"
    PATCHED = "patched"
    UNCHANGED = "unchanged"
    NONE = "none"


@dataclass(frozen=True)
class ApplyResult:
    """Created by the apply engine, consumed by the readiness watcher."""

    key: ResourceKey
    outcome: ApplyOutcome
    action: ApplyAction = ApplyAction.NONE
    uid: str = ""
    resource_version: str = ""
    message: str = ""
    error_type: str = ""
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.outcome != ApplyOutcome.FAILED


class ReadinessState(StrEnum):
    """Readiness state machine: pending is the only non-terminal state."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset(
    {ReadinessState.READY, ReadinessState.FAILED, ReadinessState.TIMED_OUT, ReadinessState.SKIPPED}
)


class InvalidTransitionError(KubeStageError):
    """A terminal readiness status was asked to change."""


@dataclass
class ReadinessStatus:
    """Readiness of one resource, owned by the task that watches it."""

    key: ResourceKey
    state: ReadinessState = ReadinessState.PENDING
    message: str = ""
    polls: int = 0
    query_errors: int = 0
    timeout: float = 0.0
    attempted: bool = False
    started_at: float | None = None
    finished_at: float | None = None  # time.monotonic()
    history: list[str] = field(default_factory=list)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def start(self) -> None:
        if self.started_at is None:
            self.started_at = time.monotonic()

    def observe(self, message: str) -> None:
        """Record a non-terminal observation."""
        if self.terminal:
            raise InvalidTransitionError(f"{self.key} is already {self.state}")
        self.polls += 1
        if message and message != self.message:
            self.history.append(message)
        self.message = message

    def transition(self, state: ReadinessState, message: str = "") -> None:
        """Move to a terminal state. Terminal statuses never change again."""
        if self.terminal:
            raise InvalidTransitionError(f"Cannot transition {self.key} from {self.state} to {state}")
        if state == ReadinessState.PENDING:
            return
        self.state = state
        if message:
            if message != self.message:
                self.history.append(message)
            self.message = message
        self.finished_at = time.monotonic()

    def as_error(self) -> KubeStageError | None:
        """The terminal failure as an exception, or None when not failed."""
        if self.state == ReadinessState.FAILED:
            return ResourceFailedError(self.key, self.message)
        if self.state == ReadinessState.TIMED_OUT:
            return ResourceTimedOutError(self.key, self.timeout, self.message)
        return None
