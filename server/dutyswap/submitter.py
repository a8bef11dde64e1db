# submitter.py
"""
Batch swap submission.

The server-side batch function is tried first; it honours `atomic` (all or
nothing) itself. When the backend reports that function as missing
(CapabilityMissing), submission degrades to one create call per pair with
best-effort semantics. Every successful pair notifies its receiver; a failed
notification never undoes the request.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .errors import CapabilityMissing, CollaboratorError, ConflictError, ValidationError
from .logging_utils import get_logger
from .models import (
    BatchOutcome,
    BatchResult,
    Duty,
    NotificationType,
    PairOutcome,
    SwapPair,
)
from .notifier import Notifier
from .pairing import pair
from .storage import Storage, outcomes_from_rows

logger = get_logger("dutyswap.submitter")


def _outcome_of(results: Sequence[PairOutcome]) -> BatchOutcome:
    succeeded = sum(1 for r in results if r.ok)
    if succeeded == len(results):
        return BatchOutcome.SUCCESS
    if succeeded == 0:
        return BatchOutcome.TOTAL_FAILURE
    return BatchOutcome.PARTIAL_FAILURE


def _aborted(pairs: Sequence[SwapPair], err: ConflictError) -> List[PairOutcome]:
    """Atomic abort: nothing was persisted, keep per-pair reasons when the backend sent them."""
    reasons = {}
    if err.details:
        for o in outcomes_from_rows(pairs, err.details):
            if o.error and o.error != "no result returned for this pair":
                reasons[(o.pair.offered_id, o.pair.target_id)] = o.error
    return [
        PairOutcome(
            pair=p,
            ok=False,
            error=reasons.get((p.offered_id, p.target_id), f"batch aborted: {err}"),
        )
        for p in pairs
    ]


class SwapSubmitter:
    def __init__(self, storage: Storage, notifier: Notifier) -> None:
        self.storage = storage
        self.notifier = notifier

    async def _submit_each(
        self, sender_id: str, pairs: Sequence[SwapPair], message: Optional[str]
    ) -> List[PairOutcome]:
        results: List[PairOutcome] = []
        for p in pairs:
            try:
                created = await self.storage.create_swap_request(sender_id, p, message)
            except (ValidationError, ConflictError, CollaboratorError) as e:
                logger.event(
                    "swap_request_failed",
                    level=logging.WARNING,
                    offered_id=p.offered_id,
                    target_id=p.target_id,
                    code=e.code,
                    error=str(e),
                )
                results.append(PairOutcome(pair=p, ok=False, error=e.user_message))
                continue
            results.append(PairOutcome(pair=p, ok=True, swap_request_id=created.id))
        return results

    async def _notify_receivers(self, results: Sequence[PairOutcome], sender_name: Optional[str]) -> None:
        who = sender_name or "A colleague"
        for r in results:
            if not r.ok:
                continue
            try:
                await self.notifier.notify(
                    r.pair.receiver_id,
                    NotificationType.SWAP_REQUEST_RECEIVED,
                    "New Swap Request",
                    f"{who} wants to swap duties with you",
                    r.swap_request_id,
                )
            except Exception as e:
                logger.event(
                    "notification_failed",
                    level=logging.WARNING,
                    receiver_id=r.pair.receiver_id,
                    swap_request_id=r.swap_request_id,
                    error=str(e),
                )

    async def submit(
        self,
        sender_id: str,
        pairs: Sequence[SwapPair],
        global_message: Optional[str] = None,
        atomic: bool = True,
        pairing_failures: Sequence[str] = (),
        sender_name: Optional[str] = None,
    ) -> BatchResult:
        if not pairs:
            logger.event("swap_batch_empty", level=logging.WARNING, failures=len(pairing_failures))
            return BatchResult(
                outcome=BatchOutcome.NO_VALID_REQUESTS,
                atomic=atomic,
                pairing_failures=list(pairing_failures),
            )

        used_fallback = False
        with logger.timed("swap_batch_finished", atomic=atomic, pairs=len(pairs)) as log_fields:
            try:
                results = await self.storage.batch_create_swap_requests(
                    sender_id, pairs, global_message, atomic
                )
            except CapabilityMissing as e:
                logger.event(
                    "swap_batch_fallback",
                    level=logging.WARNING,
                    backend_code=e.backend_code,
                    pairs=len(pairs),
                )
                used_fallback = True
                results = await self._submit_each(sender_id, pairs, global_message)
            except ConflictError as e:
                logger.event("swap_batch_aborted", level=logging.WARNING, pairs=len(pairs), error=str(e))
                results = _aborted(pairs, e)

            await self._notify_receivers(results, sender_name)

            succeeded = sum(1 for r in results if r.ok)
            outcome = _outcome_of(results)
            log_fields.update(
                outcome=outcome.value,
                succeeded=succeeded,
                failed=len(results) - succeeded,
                used_fallback=used_fallback,
            )
        return BatchResult(
            outcome=outcome,
            atomic=atomic,
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=list(results),
            used_fallback=used_fallback,
            pairing_failures=list(pairing_failures),
        )

    async def offer(
        self,
        sender_id: str,
        requested_duty_ids: Sequence[str],
        offered_duty_ids: Sequence[str],
        message: Optional[str] = None,
        atomic: bool = True,
        sender_name: Optional[str] = None,
    ) -> BatchResult:
        """Load duties by id, pair them, and submit the batch."""
        if not requested_duty_ids:
            raise ValidationError("requestedDutyIds is empty", user_message="Select at least one duty to request")

        failures: List[str] = []
        requested_map = {d.id: d for d in await self.storage.get_duties(list(requested_duty_ids))}
        requested: List[Duty] = []
        for duty_id in requested_duty_ids:
            duty = requested_map.get(duty_id)
            if duty is None:
                failures.append(f"Requested duty {duty_id} not found")
                continue
            requested.append(duty)

        offered_map = {d.id: d for d in await self.storage.get_duties(list(offered_duty_ids))}
        offered: List[Duty] = []
        for duty_id in offered_duty_ids:
            if duty_id not in offered_map:
                failures.append(f"Offered duty {duty_id} not found")
                continue
            offered.append(offered_map[duty_id])
        own = await self.storage.list_duties(sender_id)

        paired = pair(requested, offered, own, requester_id=sender_id)
        return await self.submit(
            sender_id,
            paired.pairs,
            global_message=message,
            atomic=atomic,
            pairing_failures=failures + paired.failures,
            sender_name=sender_name,
        )
