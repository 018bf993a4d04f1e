"""Per-node-type property shapes.

Each typed model validates the well-known keys for its node type and keeps
any extra keys untouched, so verticals can attach open-ended metadata.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import NodeType


class _Props(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class JournalistProps(_Props):
    email: str | None = None
    outlet: str | None = None
    beat: str | None = None
    twitter_handle: str | None = Field(default=None, alias="twitterHandle")


class ContentPieceProps(_Props):
    url: str | None = None
    channel: str | None = None
    published_at: datetime | None = Field(default=None, alias="publishedAt")
    word_count: int | None = Field(default=None, ge=0, alias="wordCount")


class RiskIndicatorProps(_Props):
    severity: Literal["low", "medium", "high", "critical"] | None = None
    score: float | None = Field(default=None, ge=0, le=100)
    category: str | None = None


class CampaignProps(_Props):
    status: str | None = None
    start_date: date | None = Field(default=None, alias="startDate")
    end_date: date | None = Field(default=None, alias="endDate")
    budget: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _dates_ordered(self) -> CampaignProps:
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


PROPERTY_MODELS: dict[NodeType, type[_Props]] = {
    NodeType.JOURNALIST: JournalistProps,
    NodeType.CONTENT_PIECE: ContentPieceProps,
    NodeType.RISK_INDICATOR: RiskIndicatorProps,
    NodeType.CAMPAIGN: CampaignProps,
    NodeType.OUTREACH_CAMPAIGN: CampaignProps,
}


def validate_properties(node_type: NodeType, properties: dict[str, Any] | None) -> dict[str, Any]:
    """Check `properties` against the shape for `node_type`.

    The caller's dict is returned as given (keys and values unchanged) when it
    validates, so stored properties stay plain JSON.
    """
    props = dict(properties or {})
    model = PROPERTY_MODELS.get(node_type)
    if model is None:
        return props
    try:
        model.model_validate(props)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"invalid properties for node type {node_type.value}",
            details={"errors": errors},
        ) from e
    return props
