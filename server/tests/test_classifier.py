import pytest

from dutyswap.classifier import classify, classify_event, is_deadhead
from dutyswap.models import DutyType, RawEvent


@pytest.mark.parametrize(
    "code,expected",
    [
        ("C/I", DutyType.CHECKIN),
        ("c/o", DutyType.CHECKOUT),
        ("PICK", DutyType.PICKUP),
        ("pickup", DutyType.PICKUP),
        ("OFF", DutyType.OFF),
        ("OFF_DAY", DutyType.OFF),
        ("O_REQ", DutyType.OFF),
        ("STBY", DutyType.STANDBY),
        ("STBY_S3", DutyType.STANDBY),
        ("DH/EW 9575", DutyType.DEADHEAD),
        ("dh/lh 100", DutyType.DEADHEAD),
        ("EW 6851", DutyType.FLIGHT),
        ("EWDH 123", DutyType.FLIGHT),
        ("XYZ", DutyType.FLIGHT),
        ("", DutyType.FLIGHT),
    ],
)
def test_classify(code, expected) -> None:
    assert classify(code) == expected


def test_marker_codes_must_match_exactly() -> None:
    assert classify("C/I EXTRA") == DutyType.FLIGHT
    assert classify("PICKUPS") == DutyType.FLIGHT


def test_deadhead_is_prefix_only() -> None:
    assert is_deadhead("DH/EW 1")
    assert not is_deadhead("EW DH/1")


def test_classify_event_keeps_fields() -> None:
    ev = RawEvent(date="2024-05-01", code="STBY_S3", departure_time="0600", departure_location="HAJ")
    classified = classify_event(ev)
    assert classified.type == DutyType.STANDBY
    assert classified.departure_time == "06:00"
    assert classified.departure_location == "HAJ"
