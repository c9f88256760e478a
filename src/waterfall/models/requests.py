"""Request bodies for the waterfall endpoints.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from waterfall.models.pipeline import Phase  # noqa: TC001 - pydantic needs it at runtime


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire aliases, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FileRef(_WireModel):
    """An editor file sent along as context."""

    path: str
    content: str


class WaterfallRequest(_WireModel):
    """Body of ``POST /waterfall``."""

    prompt: str = Field(min_length=1)
    provider: str = "auto"
    notepad_content: str | None = None
    open_files: list[FileRef] | None = None
    force_proceed: bool = False


class StepRequest(_WireModel):
    """Body of ``POST /waterfall/step``."""

    step: Phase
    input: Any = None
    context: Any = None
    provider: str = "auto"


class ResourceEstimate(BaseModel):
    """Lenient view of the estimate attached to a gate event.

    Only used to present the estimate; pipeline state keeps the raw object.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    estimated_tokens: int | None = Field(default=None, alias="estimatedTokens")
    estimated_cost_usd: float | None = Field(default=None, alias="estimatedCostUSD")
    risk_level: str | None = Field(default=None, alias="riskLevel")
    reason: str | None = None
