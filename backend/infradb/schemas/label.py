"""Pydantic schemas for cable labels."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LabelCreate(BaseModel):
    site_id: int = Field(..., ge=1)
    source: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None
    type: str = Field("cable", max_length=100)
    source_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    cable_type_id: Optional[int] = None
    created_by: Optional[int] = None

    @field_validator("source", "destination", mode="before")
    @classmethod
    def strip_endpoints(cls, v):
        return v.strip() if isinstance(v, str) else v

    def payload(self) -> Dict[str, Any]:
        return {"source": self.source, "destination": self.destination, "notes": self.notes or None}


class LabelUpdate(BaseModel):
    """Editable fields. The reference number is fixed at creation."""

    source: Optional[str] = Field(None, min_length=1, max_length=255)
    destination: Optional[str] = Field(None, min_length=1, max_length=255)
    notes: Optional[str] = None
    type: Optional[str] = Field(None, max_length=100)
    source_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    cable_type_id: Optional[int] = None

    @field_validator("source", "destination", mode="before")
    @classmethod
    def strip_endpoints(cls, v):
        return v.strip() if isinstance(v, str) else v


class LabelSearch(BaseModel):
    search: Optional[str] = None
    ref_string: Optional[str] = None
    limit: int = Field(50, ge=0, le=1000)
    offset: int = Field(0, ge=0)
    sort_by: str = Field("created_at", pattern="^(created_at|ref_string|ref_number)$")
    sort_order: str = Field("DESC", pattern="^(ASC|DESC)$")


class LabelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    site_id: int
    ref_number: Optional[int] = None
    ref_string: str
    type: str
    source: Optional[str] = None
    destination: Optional[str] = None
    notes: Optional[str] = None
    source_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    cable_type_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def unpack_payload(cls, data):
        if isinstance(data, dict) and data.get("payload_json"):
            data = dict(data)
            try:
                payload = json.loads(data.pop("payload_json"))
            except (TypeError, ValueError):
                payload = {}
            for key in ("source", "destination", "notes"):
                data.setdefault(key, payload.get(key))
        return data


class BulkDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class LabelStats(BaseModel):
    total_labels: int = 0
    labels_this_month: int = 0
    labels_today: int = 0
