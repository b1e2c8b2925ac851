"""Core data models for ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from motingest.utils.time import parse_completed_date


FAILED_RESULT = "FAILED"


class RawComment(BaseModel):
    """Reason-for-refusal entry attached to a failed test."""

    model_config = ConfigDict(extra="ignore")

    text: str
    type: str


class RawMotTest(BaseModel):
    """One MOT test as returned by the API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    completed_date: datetime = Field(alias="completedDate")
    test_result: str = Field(alias="testResult")
    rfr_and_comments: list[RawComment] = Field(default_factory=list, alias="rfrAndComments")

    @field_validator("completed_date", mode="before")
    @classmethod
    def parse_completed(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = parse_completed_date(value)
            if parsed is None:
                raise ValueError(f"unrecognised completion date: {value!r}")
            return parsed
        return value

    @field_validator("rfr_and_comments", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def failed(self) -> bool:
        return self.test_result == FAILED_RESULT


class RawVehicle(BaseModel):
    """Vehicle header; its tests are validated one by one by the flattener."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    registration: str = Field(min_length=1)
    make: Optional[str] = None
    model: Optional[str] = None
    mot_tests: list[Any] = Field(default_factory=list, alias="motTests")

    @field_validator("mot_tests", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class MotRecord(BaseModel):
    """Flattened row of the motdata table."""

    model_config = ConfigDict(frozen=True)

    registration: str
    make: Optional[str] = None
    model: Optional[str] = None
    date: datetime
    result: str
    reason: Optional[str] = None
    type: Optional[str] = None

    @model_validator(mode="after")
    def check_reason_matches_result(self) -> "MotRecord":
        if (self.reason is None) != (self.type is None):
            raise ValueError("reason and type must both be set or both be empty")
        if (self.result == FAILED_RESULT) != (self.reason is not None):
            raise ValueError("reason/type are required for, and only for, failed tests")
        return self


class PageStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Cursor:
    """Position in the remote dataset: page number plus optional date filter."""

    page: int = 0
    date_filter: Optional[date] = None

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValueError(f"page must be non-negative, got {self.page}")

    def advance(self) -> "Cursor":
        return replace(self, page=self.page + 1)


@dataclass
class PageResult:
    """Outcome of one page fetch that did not fail."""

    status: PageStatus
    page: int
    vehicles: list[Any] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.status is PageStatus.NOT_FOUND or not self.vehicles

    @classmethod
    def not_found(cls, page: int) -> "PageResult":
        return cls(status=PageStatus.NOT_FOUND, page=page)
