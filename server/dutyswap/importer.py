# importer.py
import datetime as dt
import logging
from typing import FrozenSet, List, Sequence

from .classifier import is_deadhead
from .dedup import LegKey, existing_keys, filter_new, staged_arrival, staged_departure
from .errors import ConflictError, ValidationError
from .logging_utils import get_logger
from .models import (
    IMPORTABLE_TYPES,
    FlightLeg,
    ImportBlockResult,
    ImportResult,
    StagedDutyBlock,
    StagedDutyLeg,
)
from .storage import Storage

logger = get_logger("dutyswap.importer")


def to_flight_leg(leg: StagedDutyLeg) -> FlightLeg:
    return FlightLeg(
        flight_number=leg.code,
        departure_time=staged_departure(leg),
        arrival_time=staged_arrival(leg),
        departure_location=leg.dep,
        arrival_location=leg.arr,
        is_deadhead=is_deadhead(leg.code),
    )


class DutyImporter:
    """Persists reviewed staged blocks as Duty + FlightLeg rows, skipping legs the owner already has."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def import_blocks(self, owner_id: str, blocks: Sequence[StagedDutyBlock]) -> ImportResult:
        if not blocks:
            raise ValidationError("no blocks in import", user_message="No duties provided")

        dates = [leg.date for b in blocks for leg in b.legs]
        if not dates:
            raise ValidationError("blocks contain no legs", user_message="No duties provided")

        utc = dt.timezone.utc
        window_start = dt.datetime.combine(min(dates), dt.time(0, 0, 0), tzinfo=utc)
        window_end = dt.datetime.combine(max(dates), dt.time(23, 59, 59), tzinfo=utc)

        with logger.timed("import_completed", owner_id=owner_id, blocks=len(blocks)) as log_fields:
            # Only legs around the imported dates can collide
            existing = await self.storage.list_legs(owner_id, window_start, window_end)
            log_fields["existing_legs"] = len(existing)
            results = await self._import_each(owner_id, blocks, existing_keys(owner_id, existing))

            inserted = sum(r.legs_inserted for r in results)
            skipped = sum(r.legs_skipped for r in results)
            log_fields.update(legs_inserted=inserted, legs_skipped=skipped)
        return ImportResult(results=results, legs_inserted=inserted, legs_skipped=skipped)

    async def _import_each(
        self, owner_id: str, blocks: Sequence[StagedDutyBlock], seen: FrozenSet[LegKey]
    ) -> List[ImportBlockResult]:
        results: List[ImportBlockResult] = []
        for block in blocks:
            legs = [leg for leg in block.legs if leg.type in IMPORTABLE_TYPES]
            filtered = filter_new(legs, (), owner_id, seen)

            if not filtered.new_legs:
                results.append(ImportBlockResult(block_id=block.id, legs_skipped=len(legs)))
                continue

            first = filtered.new_legs[0]
            duty_id = await self.storage.insert_duty(owner_id, staged_departure(first), None)

            try:
                await self.storage.insert_legs(duty_id, [to_flight_leg(leg) for leg in filtered.new_legs])
            except ConflictError as e:
                logger.event(
                    "import_legs_conflict",
                    level=logging.WARNING,
                    block_id=block.id,
                    duty_id=duty_id,
                    error=str(e),
                )
                # No legless duty rows
                await self.storage.delete_duty(duty_id)
                results.append(
                    ImportBlockResult(
                        block_id=block.id,
                        legs_skipped=len(legs),
                        error=e.user_message,
                    )
                )
                continue

            # Later blocks of this import must not re-insert these legs
            seen = filtered.seen
            results.append(
                ImportBlockResult(
                    block_id=block.id,
                    created_duty_id=duty_id,
                    legs_inserted=filtered.inserted,
                    legs_skipped=filtered.skipped,
                )
            )

        return results
