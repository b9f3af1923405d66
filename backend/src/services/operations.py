"""Explicit per-kind operation state shared by the transfer and import services."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class TransferKind(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    IMPORT = "import"
    EXPORT = "export"


class OperationPhase(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OperationInProgressError(RuntimeError):
    """Raised when an operation of the same kind is already running."""

    def __init__(self, kind: TransferKind) -> None:
        super().__init__(f"A {kind.value} operation is already in progress.")
        self.kind = kind


@dataclass(slots=True)
class OperationState:
    kind: TransferKind
    phase: OperationPhase = OperationPhase.IDLE
    message: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.phase is OperationPhase.IN_PROGRESS

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"kind": self.kind.value, "phase": self.phase.value, "message": self.message}


class OperationTracker:
    """Track one Idle -> InProgress -> Succeeded/Failed cycle per operation kind.

    Kinds are independent of each other; only a second operation of a kind
    that is already in progress is rejected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[TransferKind, OperationState] = {
            kind: OperationState(kind) for kind in TransferKind
        }

    def begin(self, kind: TransferKind) -> None:
        with self._lock:
            state = self._states[kind]
            if state.busy:
                raise OperationInProgressError(kind)
            state.phase = OperationPhase.IN_PROGRESS
            state.message = None

    def finish(self, kind: TransferKind, success: bool, message: Optional[str] = None) -> OperationState:
        with self._lock:
            state = self._states[kind]
            state.phase = OperationPhase.SUCCEEDED if success else OperationPhase.FAILED
            state.message = message
            return OperationState(kind, state.phase, state.message)

    def reset(self, kind: Optional[TransferKind] = None) -> None:
        """Return one kind (or every kind) to Idle unless it is still running."""
        with self._lock:
            kinds = [kind] if kind is not None else list(TransferKind)
            for item in kinds:
                state = self._states[item]
                if not state.busy:
                    state.phase = OperationPhase.IDLE
                    state.message = None

    def state(self, kind: TransferKind) -> OperationState:
        with self._lock:
            current = self._states[kind]
            return OperationState(kind, current.phase, current.message)

    def snapshot(self) -> Dict[str, Dict[str, Optional[str]]]:
        with self._lock:
            return {kind.value: state.to_dict() for kind, state in self._states.items()}
