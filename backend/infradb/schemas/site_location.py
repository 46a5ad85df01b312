"""Pydantic schemas for site locations."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from infradb.db.dialects import NONE_SENTINEL, UNLABELED_SENTINEL

RESERVED_VALUES = (NONE_SENTINEL, UNLABELED_SENTINEL)


class TemplateTypeEnum(str, Enum):
    DATACENTRE = "DATACENTRE"
    DOMESTIC = "DOMESTIC"


class DeleteStrategyEnum(str, Enum):
    AUTO = "auto"
    REASSIGN = "reassign"
    CASCADE = "cascade"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if value in RESERVED_VALUES:
            raise ValueError(f"{value} is a reserved value")
        return value or None
    return value


def _check_template(
    template_type: TemplateTypeEnum,
    suite: Optional[str],
    row: Optional[str],
    rack: Optional[str],
    area: Optional[str],
) -> None:
    if template_type == TemplateTypeEnum.DATACENTRE:
        missing = [name for name, value in (("Suite", suite), ("Row", row), ("Rack", rack)) if not value]
        if missing:
            raise ValueError(f"{'/'.join(missing)} {'is' if len(missing) == 1 else 'are'} required")
        if area:
            raise ValueError("Area must be empty for Datacentre/Commercial locations")
    else:
        if not area:
            raise ValueError("Area is required")
        if suite or row or rack:
            raise ValueError("Suite/Row/Rack must be empty for Domestic locations")


# ============================================================================
# Input
# ============================================================================

class SiteLocationFields(BaseModel):
    template_type: TemplateTypeEnum = TemplateTypeEnum.DATACENTRE
    floor: str = Field(..., max_length=64)
    suite: Optional[str] = Field(None, max_length=64)
    row: Optional[str] = Field(None, max_length=64)
    rack: Optional[str] = Field(None, max_length=64)
    area: Optional[str] = Field(None, max_length=64)
    label: Optional[str] = Field(None, max_length=255)

    @field_validator("suite", "row", "rack", "area", "label", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("floor", mode="before")
    @classmethod
    def floor_required(cls, v):
        v = _blank_to_none(v)
        if v is None:
            raise ValueError("Floor is required")
        return v

    @model_validator(mode="after")
    def validate_template(self) -> "SiteLocationFields":
        _check_template(self.template_type, self.suite, self.row, self.rack, self.area)
        return self


class SiteLocationCreate(SiteLocationFields):
    site_id: int = Field(..., ge=1)


class SiteLocationUpdate(BaseModel):
    """Partial update. Template rules are checked against the merged row."""

    template_type: Optional[TemplateTypeEnum] = None
    floor: Optional[str] = Field(None, max_length=64)
    suite: Optional[str] = Field(None, max_length=64)
    row: Optional[str] = Field(None, max_length=64)
    rack: Optional[str] = Field(None, max_length=64)
    area: Optional[str] = Field(None, max_length=64)
    label: Optional[str] = Field(None, max_length=255)

    @field_validator("floor", "suite", "row", "rack", "area", "label", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    def merge(self, current: "SiteLocationRead") -> SiteLocationFields:
        """Apply the set fields over ``current`` and validate the result."""
        merged = {
            "template_type": current.template_type,
            "floor": current.floor,
            "suite": current.suite,
            "row": current.row,
            "rack": current.rack,
            "area": current.area,
            "label": current.label,
        }
        merged.update(self.model_dump(exclude_unset=True))
        return SiteLocationFields(**merged)


class DeleteOptions(BaseModel):
    strategy: DeleteStrategyEnum = DeleteStrategyEnum.AUTO
    target_location_id: Optional[int] = None


# ============================================================================
# Output
# ============================================================================

class SiteLocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    site_id: int
    template_type: TemplateTypeEnum
    floor: str
    suite: Optional[str] = None
    row: Optional[str] = None
    rack: Optional[str] = None
    area: Optional[str] = None
    label: Optional[str] = None
    effective_label: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UsageCounts(BaseModel):
    source: int = 0
    destination: int = 0

    @property
    def total(self) -> int:
        return self.source + self.destination


class DeleteResult(BaseModel):
    deleted: bool
    # "none" when no dependent label was touched
    strategy_used: str = "none"
    usage: UsageCounts
    labels_deleted: int = 0
    labels_reassigned_source: int = 0
    labels_reassigned_destination: int = 0
