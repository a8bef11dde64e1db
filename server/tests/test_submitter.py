import pytest

from conftest import FakeNotifier, FakeStorage, make_duty
from dutyswap.errors import CollaboratorError, ValidationError
from dutyswap.models import BatchOutcome, NotificationType, SwapPair
from dutyswap.submitter import SwapSubmitter


def _seed(storage: FakeStorage) -> None:
    storage.add_duty(make_duty("O1", "2024-05-01", "U1"))
    storage.add_duty(make_duty("O2", "2024-05-02", "U1"))
    storage.add_duty(make_duty("T1", "2024-05-01", "U2"))
    storage.add_duty(make_duty("T2", "2024-05-02", "U3"))


PAIRS = [
    SwapPair(offered_id="O1", target_id="T1", receiver_id="U2"),
    SwapPair(offered_id="O2", target_id="T2", receiver_id="U3"),
]


@pytest.mark.asyncio
async def test_empty_pairs_never_touch_storage(storage, notifier) -> None:
    result = await SwapSubmitter(storage, notifier).submit("U1", [], pairing_failures=["Invalid target duty T9: no owner"])

    assert result.outcome == BatchOutcome.NO_VALID_REQUESTS
    assert result.pairing_failures == ["Invalid target duty T9: no owner"]
    assert storage.batch_calls == []
    assert storage.create_calls == []


@pytest.mark.asyncio
async def test_atomic_batch_success_notifies_each_receiver(storage, notifier) -> None:
    _seed(storage)

    result = await SwapSubmitter(storage, notifier).submit("U1", PAIRS, "please", atomic=True)

    assert result.outcome == BatchOutcome.SUCCESS
    assert (result.succeeded, result.failed) == (2, 0)
    assert not result.used_fallback
    assert [n[0] for n in notifier.sent] == ["U2", "U3"]
    assert all(n[1] == NotificationType.SWAP_REQUEST_RECEIVED for n in notifier.sent)
    assert [n[4] for n in notifier.sent] == [r.swap_request_id for r in result.results]


@pytest.mark.asyncio
async def test_atomic_conflict_aborts_whole_batch(storage, notifier) -> None:
    _seed(storage)
    submitter = SwapSubmitter(storage, notifier)
    await submitter.submit("U1", PAIRS[:1], atomic=True)
    notifier.sent.clear()

    result = await submitter.submit("U1", PAIRS, atomic=True)

    assert result.outcome == BatchOutcome.TOTAL_FAILURE
    assert result.succeeded == 0
    assert result.failed == 2
    assert notifier.sent == []
    assert len(storage.swaps) == 1


@pytest.mark.asyncio
async def test_non_atomic_batch_reports_partial_failure(storage, notifier) -> None:
    _seed(storage)
    submitter = SwapSubmitter(storage, notifier)
    await submitter.submit("U1", PAIRS[:1], atomic=False)
    notifier.sent.clear()

    result = await submitter.submit("U1", PAIRS, atomic=False)

    assert result.outcome == BatchOutcome.PARTIAL_FAILURE
    assert (result.succeeded, result.failed) == (1, 1)
    assert [r.ok for r in result.results] == [False, True]
    assert [n[0] for n in notifier.sent] == ["U3"]


@pytest.mark.asyncio
async def test_missing_batch_function_falls_back_to_single_creates(notifier) -> None:
    storage = FakeStorage(batch_supported=False)
    _seed(storage)
    storage.fail_create_for = {"T2"}

    result = await SwapSubmitter(storage, notifier).submit("U1", PAIRS, atomic=True)

    assert result.used_fallback
    assert len(storage.batch_calls) == 1
    assert storage.create_calls == PAIRS
    assert result.outcome == BatchOutcome.PARTIAL_FAILURE
    assert (result.succeeded, result.failed) == (1, 1)
    assert len(storage.swaps) == 1


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_requests(storage) -> None:
    _seed(storage)

    result = await SwapSubmitter(storage, FakeNotifier(fail=True)).submit("U1", PAIRS)

    assert result.outcome == BatchOutcome.SUCCESS
    assert len(storage.swaps) == 2


@pytest.mark.asyncio
async def test_collaborator_errors_propagate(storage, notifier) -> None:
    async def broken(*args, **kwargs):
        raise CollaboratorError("storage unreachable", status=503)

    storage.batch_create_swap_requests = broken

    with pytest.raises(CollaboratorError):
        await SwapSubmitter(storage, notifier).submit("U1", PAIRS)


@pytest.mark.asyncio
async def test_offer_pairs_and_submits(storage, notifier) -> None:
    _seed(storage)

    result = await SwapSubmitter(storage, notifier).offer("U1", ["T1", "T2", "missing"], ["O2", "O1"], "hi")

    assert result.outcome == BatchOutcome.SUCCESS
    assert [(r.pair.offered_id, r.pair.target_id) for r in result.results] == [("O1", "T1"), ("O2", "T2")]
    assert result.pairing_failures == ["Requested duty missing not found"]
    assert storage.batch_calls[0]["message"] == "hi"


@pytest.mark.asyncio
async def test_offer_without_valid_targets_is_no_valid_requests(storage, notifier) -> None:
    storage.add_duty(make_duty("O1", "2024-05-01", "U1"))
    storage.add_duty(make_duty("T1", "2024-05-01", None))

    result = await SwapSubmitter(storage, notifier).offer("U1", ["T1"], ["O1"])

    assert result.outcome == BatchOutcome.NO_VALID_REQUESTS
    assert storage.batch_calls == []
    assert len(result.pairing_failures) == 1


@pytest.mark.asyncio
async def test_offer_requires_requested_ids(storage, notifier) -> None:
    with pytest.raises(ValidationError):
        await SwapSubmitter(storage, notifier).offer("U1", [], ["O1"])
