# dedup.py
"""
Leg de-duplication for roster imports.

A leg's identity is (owner, FLIGHT NUMBER, departure instant, arrival
instant, DEP, ARR). Keys are always owner-scoped: a shared flight crewed by
two users is two legitimate legs.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import AbstractSet, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from .config import DEFAULT_ARRIVAL_TIME, DEFAULT_DEPARTURE_TIME
from .models import FlightLeg, StagedDutyLeg

Leg = Union[StagedDutyLeg, FlightLeg]
LegKey = Tuple[str, str, str, str, str, str]


def iso_instant(ts: dt.datetime) -> str:
    """UTC instant with millisecond precision, e.g. 2024-05-01T06:15:00.000Z."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    ts = ts.astimezone(dt.timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def _at(day: dt.date, hhmm: Optional[str], fallback: str) -> dt.datetime:
    t = hhmm or fallback
    hours, minutes = t.split(":")
    return dt.datetime(day.year, day.month, day.day, int(hours), int(minutes), tzinfo=dt.timezone.utc)


def staged_departure(leg: StagedDutyLeg) -> dt.datetime:
    return _at(leg.date, leg.dep_time, DEFAULT_DEPARTURE_TIME)


def staged_arrival(leg: StagedDutyLeg) -> dt.datetime:
    return _at(leg.date, leg.arr_time, DEFAULT_ARRIVAL_TIME)


def leg_key(owner_id: str, leg: Leg) -> LegKey:
    if isinstance(leg, StagedDutyLeg):
        number, dep_ts, arr_ts = leg.code, staged_departure(leg), staged_arrival(leg)
        dep, arr = leg.dep, leg.arr
    else:
        number, dep_ts, arr_ts = leg.flight_number, leg.departure_time, leg.arrival_time
        dep, arr = leg.departure_location, leg.arrival_location
    return (
        str(owner_id),
        number.upper(),
        iso_instant(dep_ts),
        iso_instant(arr_ts),
        dep.upper(),
        arr.upper(),
    )


@dataclass(frozen=True)
class FilterResult:
    new_legs: List[Leg] = field(default_factory=list)
    inserted: int = 0
    skipped: int = 0
    seen: FrozenSet[LegKey] = frozenset()


def existing_keys(owner_id: str, existing_legs: Iterable[Leg]) -> FrozenSet[LegKey]:
    return frozenset(leg_key(owner_id, leg) for leg in existing_legs)


def filter_new(
    candidate_legs: Sequence[Leg],
    existing_legs: Iterable[Leg],
    owner_id: str,
    seen: Optional[AbstractSet[LegKey]] = None,
) -> FilterResult:
    """
    Return the candidates not already owned by `owner_id`, in input order.

    `seen` carries keys from earlier blocks of the same import; the returned
    FilterResult.seen includes every key seen so far, so callers can thread
    it through a multi-block import. Neither input is mutated.
    """
    keys = set(seen or ()) | existing_keys(owner_id, existing_legs)
    new_legs: List[Leg] = []

    for leg in candidate_legs:
        key = leg_key(owner_id, leg)
        if key in keys:
            continue
        keys.add(key)
        new_legs.append(leg)

    return FilterResult(
        new_legs=new_legs,
        inserted=len(new_legs),
        skipped=len(candidate_legs) - len(new_legs),
        seen=frozenset(keys),
    )
