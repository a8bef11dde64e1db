from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .errors import CapabilityMissing, DutySwapError, NotFoundError, ValidationError
from .logging_utils import log_event
from .models import NotificationType, SwapRequest, SwapStatus
from .notifier import Notifier
from .storage import Storage

logger = logging.getLogger("dutyswap.responder")

_ACTIONS = {
    "approve": (SwapStatus.APPROVED, NotificationType.SWAP_REQUEST_APPROVED, "approved"),
    "deny": (SwapStatus.DENIED, NotificationType.SWAP_REQUEST_DENIED, "denied"),
}


class SwapResponder:
    """Receiver's one-time decision on a PENDING swap request."""

    def __init__(self, storage: Storage, notifier: Notifier) -> None:
        self.storage = storage
        self.notifier = notifier

    async def respond(
        self,
        receiver_id: str,
        request_id: str,
        action: str,
        response_message: Optional[str] = None,
        receiver_name: Optional[str] = None,
    ) -> SwapRequest:
        """
        Approve or deny a request addressed to `receiver_id`.

        Approval exchanges ownership: the sender's duty goes to the receiver
        and the target duty goes to the sender.
        """
        decision = _ACTIONS.get((action or "").strip().lower())
        if decision is None:
            raise ValidationError(f"invalid action {action!r}", user_message="Invalid action")
        status, note_type, verb = decision

        pending = await self.storage.get_pending_swap_request(request_id, receiver_id)
        if pending is None:
            raise NotFoundError(
                f"no pending swap request {request_id} for {receiver_id}",
                user_message="Swap request not found or already processed",
            )

        if status == SwapStatus.APPROVED:
            updated = await self._approve(pending, response_message or None)
        else:
            updated = await self.storage.update_swap_request(request_id, status, response_message or None)

        log_event(
            logger,
            "swap_request_responded",
            request_id=request_id,
            status=status.value,
            sender_id=pending.sender_id,
            receiver_id=receiver_id,
        )

        try:
            await self.notifier.notify(
                pending.sender_id,
                note_type,
                f"Swap Request {verb.capitalize()}",
                f"{receiver_name or 'Your colleague'} has {verb} your swap request",
                request_id,
            )
        except Exception as e:
            log_event(logger, "notification_failed", level=logging.WARNING, request_id=request_id, error=str(e))

        return updated

    async def _approve(self, pending: SwapRequest, response_message: Optional[str]) -> SwapRequest:
        try:
            return await self.storage.approve_swap_request(pending.id, pending.receiver_id, response_message)
        except CapabilityMissing as e:
            log_event(
                logger,
                "swap_approve_fallback",
                level=logging.WARNING,
                request_id=pending.id,
                backend_code=e.backend_code,
            )
        return await self._approve_stepwise(pending, response_message)

    async def _approve_stepwise(self, pending: SwapRequest, response_message: Optional[str]) -> SwapRequest:
        """
        Owner exchange first, status last. A failed step restores the owners
        already changed, so the request either stays PENDING with the original
        owners or ends APPROVED with both duties exchanged.
        """
        changed: List[Tuple[str, str]] = []
        try:
            await self.storage.set_duty_owner(pending.sender_duty_id, pending.receiver_id)
            changed.append((pending.sender_duty_id, pending.sender_id))
            await self.storage.set_duty_owner(pending.target_duty_id, pending.sender_id)
            changed.append((pending.target_duty_id, pending.receiver_id))
            return await self.storage.update_swap_request(pending.id, SwapStatus.APPROVED, response_message)
        except DutySwapError as e:
            log_event(
                logger,
                "swap_approve_failed",
                level=logging.ERROR,
                request_id=pending.id,
                restoring=len(changed),
                error=str(e),
            )
            await self._restore_owners(pending.id, changed)
            raise

    async def _restore_owners(self, request_id: str, changed: List[Tuple[str, str]]) -> None:
        for duty_id, owner_id in reversed(changed):
            try:
                await self.storage.set_duty_owner(duty_id, owner_id)
            except DutySwapError as e:
                log_event(
                    logger,
                    "swap_owner_restore_failed",
                    level=logging.ERROR,
                    request_id=request_id,
                    duty_id=duty_id,
                    owner_id=owner_id,
                    error=str(e),
                )
