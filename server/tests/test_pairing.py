from conftest import make_duty
from dutyswap.models import SwapPair
from dutyswap.pairing import pair


def test_same_date_offer_is_paired() -> None:
    requested = [make_duty("T1", "2024-05-01", "U2")]
    offered = [make_duty("O1", "2024-05-01", "U1"), make_duty("O2", "2024-05-03", "U1")]

    result = pair(requested, offered)

    assert result.pairs == [SwapPair(offered_id="O1", target_id="T1", receiver_id="U2")]
    assert result.failures == []


def test_same_date_preferred_over_earlier_listed_offer() -> None:
    requested = [make_duty("T1", "2024-05-01", "U2")]
    offered = [make_duty("O2", "2024-05-02", "U1"), make_duty("O1", "2024-05-01", "U1")]

    result = pair(requested, offered)

    assert result.pairs[0].offered_id == "O1"


def test_falls_back_to_first_offer_without_same_date() -> None:
    requested = [make_duty("T1", "2024-05-10", "U2")]
    offered = [make_duty("O2", "2024-05-02", "U1"), make_duty("O3", "2024-05-03", "U1")]

    result = pair(requested, offered)

    assert result.pairs[0].offered_id == "O2"


def test_target_without_owner_is_a_failure() -> None:
    result = pair([make_duty("T1", "2024-05-01", None)], [make_duty("O1", "2024-05-01", "U1")])

    assert result.pairs == []
    assert len(result.failures) == 1
    assert "Invalid target" in result.failures[0]


def test_no_offers_records_failure() -> None:
    result = pair([make_duty("T1", "2024-05-01", "U2")], [])

    assert result.pairs == []
    assert result.failures == ["No offered duty available for T1"]


def test_self_swap_is_rejected() -> None:
    own = [make_duty("O1", "2024-05-01", "U1"), make_duty("O2", "2024-05-02", "U1")]
    requested = [make_duty("O2", "2024-05-02", "U1"), make_duty("T1", "2024-05-01", "U2")]

    result = pair(requested, own[:1], self_duties=own)

    assert [p.target_id for p in result.pairs] == ["T1"]
    assert all(p.receiver_id not in (None, "U1") for p in result.pairs)
    assert any("yourself" in f for f in result.failures)


def test_offers_owned_by_someone_else_are_dropped() -> None:
    requested = [make_duty("T1", "2024-05-01", "U2")]
    offered = [make_duty("X1", "2024-05-01", "U3"), make_duty("O1", "2024-05-04", "U1")]

    result = pair(requested, offered, requester_id="U1")

    assert result.pairs[0].offered_id == "O1"
    assert any("X1" in f for f in result.failures)


def test_day_is_truncated_in_utc() -> None:
    requested = [make_duty("T1", "2024-05-01T23:30:00-02:00", "U2")]
    offered = [make_duty("O1", "2024-05-01T10:00:00Z", "U1"), make_duty("O2", "2024-05-02T03:00:00Z", "U1")]

    result = pair(requested, offered)

    assert result.pairs[0].offered_id == "O2"


def test_pairs_follow_requested_order() -> None:
    requested = [
        make_duty("T2", "2024-05-02", "U3"),
        make_duty("T1", "2024-05-01", "U2"),
    ]
    offered = [make_duty("O1", "2024-05-01", "U1"), make_duty("O2", "2024-05-02", "U1")]

    result = pair(requested, offered)

    assert [(p.target_id, p.offered_id, p.receiver_id) for p in result.pairs] == [
        ("T2", "O2", "U3"),
        ("T1", "O1", "U2"),
    ]


def test_requester_is_taken_from_offered_owner() -> None:
    requested = [make_duty("T1", "2024-05-01", "U1"), make_duty("T2", "2024-05-01", "U2")]
    offered = [make_duty("O1", "2024-05-01", "U1")]

    result = pair(requested, offered)

    assert result.pairs == [SwapPair(offered_id="O1", target_id="T2", receiver_id="U2")]
    assert result.failures == ["Invalid target duty T1: cannot swap with yourself"]
