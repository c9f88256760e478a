"""Pipeline state models shared by the controller and the step runner.

The pipeline tracks four phases in a fixed forward order. Each phase owns
one ``PhaseState`` slot; all four slots live together in a single
``PipelineState``. Both models are frozen: every change produces a new
state through ``with_phases`` so a published state is never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Phase(StrEnum):
    """The four pipeline phases, declared in forward order."""

    ARCHITECT = "architect"
    REASONER = "reasoner"
    EXECUTOR = "executor"
    REVIEWER = "reviewer"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)


class PhaseStatus(StrEnum):
    """Lifecycle status of a single phase slot."""

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    PAUSED = "paused"


class PhaseState(BaseModel):
    """State of one phase slot."""

    model_config = ConfigDict(frozen=True)

    status: PhaseStatus = PhaseStatus.IDLE
    data: Any = None
    error: str | None = None


def _idle_phases() -> dict[Phase, PhaseState]:
    return {phase: PhaseState() for phase in PHASE_ORDER}


class PipelineState(BaseModel):
    """The full client-side view of one pipeline run.

    Attributes:
        prompt: Prompt of the current (or last) run.
        current_phase: Phase the run is on; None only before the first run.
        phases: One slot per phase, always holding all four phases.
    """

    model_config = ConfigDict(frozen=True)

    prompt: str = ""
    current_phase: Phase | None = None
    phases: dict[Phase, PhaseState] = Field(default_factory=_idle_phases)

    @field_validator("phases")
    @classmethod
    def _fill_missing_phases(cls, v: dict[Phase, PhaseState]) -> dict[Phase, PhaseState]:
        return {phase: v.get(phase, PhaseState()) for phase in PHASE_ORDER}

    @classmethod
    def empty(cls, prompt: str = "") -> PipelineState:
        """Create the all-idle state used at session start and on reset."""
        return cls(prompt=prompt)

    def phase(self, phase: Phase) -> PhaseState:
        """Return the slot for ``phase``."""
        return self.phases[phase]

    def with_phases(self, updates: dict[Phase, PhaseState], **changes: Any) -> PipelineState:
        """Return a copy with some slots replaced.

        Args:
            updates: Slots to replace, keyed by phase.
            **changes: Other fields to replace (``prompt``, ``current_phase``).

        Returns:
            New PipelineState; ``self`` is left untouched.
        """
        return self.model_copy(update={"phases": {**self.phases, **updates}, **changes})


# ---------------------------------------------------------------------------
# Run outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunCompleted:
    """The stream finished.

    ``final`` holds the terminal ``final`` frame, or None when the server
    closed the stream without sending one.
    """

    final: dict[str, Any] | None = None


@dataclass(frozen=True)
class RunPaused:
    """The server gated the run and is waiting for confirmation."""

    phase: Phase
    reason: str
    estimate: Any = None


@dataclass(frozen=True)
class RunFailed:
    """The server signalled an error or the transport failed."""

    phase: Phase
    reason: str


@dataclass(frozen=True)
class RunCancelled:
    """The run was cancelled by this client (user cancel, reset or a newer run)."""

    phase: Phase | None = None


RunOutcome = RunCompleted | RunPaused | RunFailed | RunCancelled


@dataclass(frozen=True)
class StepOutcome:
    """Result of a single manual step run."""

    step: Phase
    status: Literal["completed", "error", "cancelled"]
    data: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True when the step completed."""
        return self.status == "completed"
