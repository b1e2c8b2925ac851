"""Flatten vehicle/test/reason payloads into motdata rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from motingest.models import MotRecord, RawMotTest, RawVehicle
from motingest.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass
class FlattenResult:
    records: List[MotRecord] = field(default_factory=list)
    skipped_vehicles: int = 0
    skipped_tests: int = 0
    filtered_tests: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_vehicles + self.skipped_tests

    def merge(self, other: "FlattenResult") -> None:
        self.records.extend(other.records)
        self.skipped_vehicles += other.skipped_vehicles
        self.skipped_tests += other.skipped_tests
        self.filtered_tests += other.filtered_tests


def flatten_page(vehicles: Iterable[Any], date_filter: Optional[date] = None) -> FlattenResult:
    """Flatten one page of vehicles, preserving vehicle and test order."""
    result = FlattenResult()
    for item in vehicles:
        result.merge(flatten_vehicle(item, date_filter))
    return result


def flatten_vehicle(item: Any, date_filter: Optional[date] = None) -> FlattenResult:
    """Flatten a single vehicle entry.

    A malformed vehicle is skipped as a whole; a malformed test is skipped
    on its own and the vehicle's other tests are still emitted.
    """
    result = FlattenResult()
    try:
        vehicle = RawVehicle.model_validate(item)
    except ValidationError as exc:
        logger.debug("flatten.skip_vehicle errors=%s", exc.error_count())
        result.skipped_vehicles = 1
        return result

    for raw_test in vehicle.mot_tests:
        try:
            test = RawMotTest.model_validate(raw_test)
        except ValidationError as exc:
            logger.debug(
                "flatten.skip_test registration=%s errors=%s",
                vehicle.registration,
                exc.error_count(),
            )
            result.skipped_tests += 1
            continue

        if date_filter is not None and test.completed_date.date() != date_filter:
            result.filtered_tests += 1
            continue

        result.records.extend(_test_records(vehicle, test))

    return result


def _test_records(vehicle: RawVehicle, test: RawMotTest) -> List[MotRecord]:
    base = {
        "registration": vehicle.registration,
        "make": vehicle.make,
        "model": vehicle.model,
        "date": test.completed_date,
        "result": test.test_result,
    }
    if test.failed:
        # A failure without reasons yields no rows.
        return [
            MotRecord(**base, reason=comment.text, type=comment.type)
            for comment in test.rfr_and_comments
        ]
    return [MotRecord(**base)]
