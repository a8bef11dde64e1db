"""
Duty-type classification for raw roster codes.

Categories overlap by naming alone, so the checks run in a fixed order and
the first match wins:

    C/I, C/O, PICK/PICKUP  → CHECKIN, CHECKOUT, PICKUP
    OFF*, O_*              → OFF
    STBY*                  → STANDBY
    DH/*                   → DEADHEAD
    anything else          → FLIGHT

Deadhead detection is prefix-only so flight numbers that merely contain
"DH" stay FLIGHT.
"""

from __future__ import annotations

from .models import ClassifiedEvent, DutyType, RawEvent


def _norm(code: str) -> str:
    return (code or "").strip().upper()


def is_checkin(code: str) -> bool:
    return _norm(code) == "C/I"


def is_checkout(code: str) -> bool:
    return _norm(code) == "C/O"


def is_pickup(code: str) -> bool:
    return _norm(code) in ("PICK", "PICKUP")


def is_off(code: str) -> bool:
    u = _norm(code)
    return u.startswith("OFF") or u.startswith("O_")


def is_standby(code: str) -> bool:
    return _norm(code).startswith("STBY")


def is_deadhead(code: str) -> bool:
    return _norm(code).startswith("DH/")


def classify(code: str) -> DutyType:
    """Total, pure classification of a roster code."""
    if is_checkin(code):
        return DutyType.CHECKIN
    if is_checkout(code):
        return DutyType.CHECKOUT
    if is_pickup(code):
        return DutyType.PICKUP
    if is_off(code):
        return DutyType.OFF
    if is_standby(code):
        return DutyType.STANDBY
    if is_deadhead(code):
        return DutyType.DEADHEAD
    return DutyType.FLIGHT


def classify_event(event: RawEvent) -> ClassifiedEvent:
    return ClassifiedEvent(**event.model_dump(), type=classify(event.code))
