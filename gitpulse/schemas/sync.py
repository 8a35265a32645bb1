"""Sync API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from gitpulse.utils.dates import as_utc


class DateRange(BaseModel):
    """Schema for a sync window."""

    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if as_utc(self.end_date) < as_utc(self.start_date):
            raise ValueError("end_date must not be before start_date")
        return self


class SyncResponse(BaseModel):
    """Schema for the outcome of a sync call."""

    status: str = "completed"
    message: str
    result: dict[str, Any] = Field(default_factory=dict)


class MaintenanceResponse(BaseModel):
    """Schema for maintenance job outcomes."""

    message: str
    updated: int = 0
    details: dict[str, Any] = Field(default_factory=dict)


class ClassificationResponse(BaseModel):
    """Schema for a single path classification."""

    path: str
    file_type: str
    extension: str
