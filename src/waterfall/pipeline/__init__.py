"""Waterfall pipeline control: state machine, stream decoding and run control."""

from waterfall.pipeline.config import (
    ClientConfig,
    ConfigError,
    load_client_config,
    load_config_file,
)
from waterfall.pipeline.context import CancellationHandle, RunContext
from waterfall.pipeline.controller import WaterfallController
from waterfall.pipeline.errors import (
    FrameParseError,
    ServerSignalledError,
    WaterfallError,
    WaterfallTransportError,
)
from waterfall.pipeline.frames import EventFrameDecoder, decode_frame
from waterfall.pipeline.gates import (
    AutoProceedGate,
    GateDecision,
    GateHook,
    HoldGate,
    drive_waterfall,
)
from waterfall.pipeline.state_machine import (
    CANCELLED_MESSAGE,
    can_transition,
    map_phase_to_step,
    transition,
)
from waterfall.pipeline.step_runner import StepRunner
from waterfall.pipeline.transport import WaterfallClient

__all__ = [
    "CANCELLED_MESSAGE",
    "AutoProceedGate",
    "CancellationHandle",
    "ClientConfig",
    "ConfigError",
    "EventFrameDecoder",
    "FrameParseError",
    "GateDecision",
    "GateHook",
    "HoldGate",
    "RunContext",
    "ServerSignalledError",
    "StepRunner",
    "WaterfallClient",
    "WaterfallController",
    "WaterfallError",
    "WaterfallTransportError",
    "can_transition",
    "decode_frame",
    "drive_waterfall",
    "load_client_config",
    "load_config_file",
    "map_phase_to_step",
    "transition",
]
