# segmenter.py
"""
Block segmentation for one crew member's event stream.

Events are sorted by (date, departure time) and folded into duty blocks:

- OFF / STANDBY close any open block and emit a standalone one-leg block.
- C/I closes any open block and opens a new, empty one.
- C/O closes the open block.
- PICKUP is dropped.
- Anything else is a leg of the open block (one is opened if the feed
  skipped its C/I).

Closing an empty block emits nothing. Block and leg ids are sequential per
run and are not persisted identifiers.
"""

import logging
from dataclasses import dataclass, replace
from functools import reduce
from typing import Iterable, List, Optional, Tuple

from .classifier import classify
from .logging_utils import log_event
from .models import DutyType, RawEvent, StagedDutyBlock, StagedDutyLeg

logger = logging.getLogger("dutyswap.segmenter")


@dataclass(frozen=True)
class OpenBlock:
    id: str
    legs: Tuple[StagedDutyLeg, ...] = ()


@dataclass(frozen=True)
class SegmentState:
    open_block: Optional[OpenBlock] = None
    blocks: Tuple[StagedDutyBlock, ...] = ()
    block_seq: int = 0
    leg_seq: int = 0


def _sort_key(event: RawEvent):
    return (event.date, event.departure_time or "00:00")


def _make_leg(state: SegmentState, event: RawEvent, duty_type: DutyType) -> Tuple[SegmentState, StagedDutyLeg]:
    seq = state.leg_seq + 1
    leg = StagedDutyLeg(
        id=f"leg-{seq}",
        code=event.code,
        date=event.date,
        dep_time=event.departure_time,
        arr_time=event.arrival_time,
        dep=event.departure_location,
        arr=event.arrival_location,
        type=duty_type,
    )
    return replace(state, leg_seq=seq), leg


def _open(state: SegmentState) -> SegmentState:
    seq = state.block_seq + 1
    return replace(state, open_block=OpenBlock(id=f"block-{seq}"), block_seq=seq)


def _close(state: SegmentState) -> SegmentState:
    block = state.open_block
    if block is None or not block.legs:
        return replace(state, open_block=None)

    all_dh = all(leg.type == DutyType.DEADHEAD for leg in block.legs)
    staged = StagedDutyBlock(
        id=block.id,
        start_date=block.legs[0].date,
        end_date=block.legs[-1].date,
        type=DutyType.DEADHEAD if all_dh else DutyType.FLIGHT,
        legs=list(block.legs),
    )
    return replace(state, open_block=None, blocks=state.blocks + (staged,))


def _step(state: SegmentState, event: RawEvent) -> SegmentState:
    duty_type = classify(event.code)

    if duty_type in (DutyType.OFF, DutyType.STANDBY):
        if state.open_block is not None and state.open_block.legs:
            # Roster edge case: a day off/standby cutting into an unfinished pairing
            log_event(
                logger,
                "segment_block_interrupted",
                level=logging.WARNING,
                block_id=state.open_block.id,
                legs=len(state.open_block.legs),
                code=event.code,
                date=event.date.isoformat(),
            )
        state = _close(state)
        state, leg = _make_leg(state, event, duty_type)
        seq = state.block_seq + 1
        standalone = StagedDutyBlock(
            id=f"block-{seq}",
            start_date=event.date,
            end_date=event.date,
            type=duty_type,
            legs=[leg],
        )
        return replace(state, block_seq=seq, blocks=state.blocks + (standalone,))

    if duty_type == DutyType.CHECKIN:
        return _open(_close(state))

    if duty_type == DutyType.CHECKOUT:
        return _close(state)

    if duty_type == DutyType.PICKUP:
        return state

    if state.open_block is None:
        state = _open(state)
    state, leg = _make_leg(state, event, duty_type)
    block = state.open_block
    return replace(state, open_block=replace(block, legs=block.legs + (leg,)))


def segment(events: Iterable[RawEvent]) -> List[StagedDutyBlock]:
    """Group one crew member's raw events into staged duty blocks."""
    ordered = sorted(events, key=_sort_key)
    final = _close(reduce(_step, ordered, SegmentState()))

    log_event(
        logger,
        "segment_completed",
        events=len(ordered),
        blocks=len(final.blocks),
        legs=sum(len(b.legs) for b in final.blocks),
    )
    return list(final.blocks)
