"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from waterfall.pipeline.config import ClientConfig
from waterfall.pipeline.transport import WaterfallClient

if TYPE_CHECKING:
    from collections.abc import Callable

    Handler = Callable[[httpx.Request], Any]


@pytest.fixture(autouse=True)
def isolate_waterfall_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer WATERFALL_* settings out of test runs."""
    for name in (
        "WATERFALL_BASE_URL",
        "WATERFALL_PROVIDER",
        "WATERFALL_SECRET",
        "WATERFALL_TIMEOUT",
        "WATERFALL_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


def encode_frames(*frames: dict[str, Any] | str) -> bytes:
    """Encode frames the way the server writes them: ``data: {json}`` + blank line.

    Strings are written verbatim after ``data: `` (for malformed frames).
    """
    lines = []
    for frame in frames:
        body = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {body}\n\n")
    return "".join(lines).encode("utf-8")


@pytest.fixture
def sse() -> Callable[..., bytes]:
    """Return the frame encoder used to build stream bodies."""
    return encode_frames


@pytest.fixture
def make_client() -> Callable[..., WaterfallClient]:
    """Build a WaterfallClient whose requests go to an in-process handler.

    Config keyword arguments are passed to ClientConfig; backoff defaults
    to zero so retry tests do not sleep.
    """

    def _make(handler: Handler, **config: Any) -> WaterfallClient:
        config.setdefault("step_backoff", 0.0)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return WaterfallClient(ClientConfig(**config), http_client=http_client)

    return _make
