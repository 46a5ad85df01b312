"""Pydantic schemas for sites."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SiteCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    # Short abbreviation used in label references; defaults to the upper-cased name
    code: Optional[str] = Field(None, min_length=2, max_length=20)
    location: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    created_by: Optional[int] = None

    @field_validator("name", "code", "location", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    def resolved_code(self) -> str:
        return self.code or self.name.upper()


class SiteUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=2, max_length=20)
    location: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None

    @field_validator("name", "code", "location", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @model_validator(mode="after")
    def name_and_code_not_cleared(self) -> "SiteUpdate":
        for field in ("name", "code"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"Site {field} cannot be empty")
        return self


class SiteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str
    location: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
