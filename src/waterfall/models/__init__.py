"""Data models for pipeline state, stream events and requests."""

from waterfall.models.events import CONTROL_SIGNALS, StreamEvent, WirePhase
from waterfall.models.pipeline import (
    PHASE_ORDER,
    Phase,
    PhaseState,
    PhaseStatus,
    PipelineState,
    RunCancelled,
    RunCompleted,
    RunFailed,
    RunOutcome,
    RunPaused,
    StepOutcome,
)
from waterfall.models.requests import FileRef, ResourceEstimate, StepRequest, WaterfallRequest

__all__ = [
    "CONTROL_SIGNALS",
    "PHASE_ORDER",
    "FileRef",
    "Phase",
    "PhaseState",
    "PhaseStatus",
    "PipelineState",
    "ResourceEstimate",
    "RunCancelled",
    "RunCompleted",
    "RunFailed",
    "RunOutcome",
    "RunPaused",
    "StepOutcome",
    "StepRequest",
    "StreamEvent",
    "WaterfallRequest",
    "WirePhase",
]
