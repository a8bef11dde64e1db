import datetime as dt
import itertools
from typing import Dict, List, Optional, Sequence

import pytest

from dutyswap.errors import CapabilityMissing, CollaboratorError, ConflictError, ValidationError
from dutyswap.models import (
    Duty,
    FlightLeg,
    NotificationType,
    PairOutcome,
    SwapPair,
    SwapRequest,
    SwapStatus,
    UserRef,
)


def make_duty(duty_id: str, date: str, owner: Optional[str] = None) -> Duty:
    return Duty(id=duty_id, date=date, user=UserRef(id=owner) if owner else None)


class FakeStorage:
    """In-memory storage with the same uniqueness rules as the real schema."""

    def __init__(self, batch_supported: bool = True, approve_supported: bool = True) -> None:
        self.batch_supported = batch_supported
        self.approve_supported = approve_supported
        self.batch_calls: List[dict] = []
        self.create_calls: List[SwapPair] = []
        self.duties: Dict[str, Duty] = {}
        self.legs: Dict[str, List[FlightLeg]] = {}
        self.swaps: Dict[str, SwapRequest] = {}
        self.notifications: List[dict] = []
        self.fail_create_for: set = set()
        # 1-based set_duty_owner call that fails
        self.fail_owner_update_on: Optional[int] = None
        self.owner_updates = 0
        self.deleted: List[str] = []
        self._ids = itertools.count(1)

    def add_duty(self, duty: Duty) -> Duty:
        self.duties[duty.id] = duty
        self.legs.setdefault(duty.id, list(duty.legs))
        return duty

    def owner_legs(self, owner_id: str) -> List[FlightLeg]:
        return [leg for d in self.duties.values() if d.owner_id == owner_id for leg in self.legs.get(d.id, [])]

    async def list_legs(self, owner_id: str, start: dt.datetime, end: dt.datetime) -> List[FlightLeg]:
        return [
            leg
            for d in self.duties.values()
            if d.owner_id == owner_id and start <= d.date <= end
            for leg in self.legs.get(d.id, [])
        ]

    async def insert_duty(self, owner_id: str, date: dt.datetime, pairing: Optional[str]) -> str:
        duty_id = f"duty-{next(self._ids)}"
        self.add_duty(Duty(id=duty_id, date=date, pairing=pairing, user=UserRef(id=owner_id)))
        return duty_id

    async def insert_legs(self, duty_id: str, legs: Sequence[FlightLeg]) -> None:
        self.legs.setdefault(duty_id, []).extend(legs)

    async def delete_duty(self, duty_id: str) -> None:
        self.duties.pop(duty_id, None)
        self.legs.pop(duty_id, None)
        self.deleted.append(duty_id)

    def _check_pair(self, sender_id: str, p: SwapPair) -> None:
        own = self.duties.get(p.offered_id)
        if own is None or own.owner_id != sender_id:
            raise ValidationError(f"Invalid sender duty {p.offered_id}")
        target = self.duties.get(p.target_id)
        if target is None or target.owner_id != p.receiver_id:
            raise ValidationError(f"Invalid target duty {p.target_id}")
        for s in self.swaps.values():
            if (
                s.sender_duty_id == p.offered_id
                and s.target_duty_id == p.target_id
                and s.status == SwapStatus.PENDING
            ):
                raise ConflictError("duplicate pending request")

    def _insert_swap(self, sender_id: str, p: SwapPair, message: Optional[str]) -> SwapRequest:
        swap = SwapRequest(
            id=f"swap-{next(self._ids)}",
            sender_id=sender_id,
            receiver_id=p.receiver_id,
            sender_duty_id=p.offered_id,
            target_duty_id=p.target_id,
            message=message,
        )
        self.swaps[swap.id] = swap
        return swap

    async def batch_create_swap_requests(
        self, sender_id: str, pairs: Sequence[SwapPair], global_message: Optional[str], atomic: bool
    ) -> List[PairOutcome]:
        self.batch_calls.append({"pairs": list(pairs), "message": global_message, "atomic": atomic})
        if not self.batch_supported:
            raise CapabilityMissing(
                "Could not find the function public.batch_create_swap_requests",
                status=404,
                backend_code="PGRST202",
            )

        if atomic:
            for p in pairs:
                try:
                    self._check_pair(sender_id, p)
                except (ValidationError, ConflictError) as e:
                    raise ConflictError(f"batch aborted: {e}") from e
            return [
                PairOutcome(pair=p, ok=True, swap_request_id=self._insert_swap(sender_id, p, global_message).id)
                for p in pairs
            ]

        results = []
        for p in pairs:
            try:
                self._check_pair(sender_id, p)
            except (ValidationError, ConflictError) as e:
                results.append(PairOutcome(pair=p, ok=False, error=str(e)))
                continue
            swap = self._insert_swap(sender_id, p, global_message)
            results.append(PairOutcome(pair=p, ok=True, swap_request_id=swap.id))
        return results

    async def create_swap_request(self, sender_id: str, pair: SwapPair, message: Optional[str]) -> SwapRequest:
        self.create_calls.append(pair)
        if pair.target_id in self.fail_create_for:
            raise ConflictError("duplicate pending request")
        self._check_pair(sender_id, pair)
        return self._insert_swap(sender_id, pair, message)

    async def get_duties(self, duty_ids: Sequence[str]) -> List[Duty]:
        return [self.duties[i] for i in duty_ids if i in self.duties]

    async def list_duties(self, owner_id: str) -> List[Duty]:
        return [d for d in self.duties.values() if d.owner_id == owner_id]

    async def get_pending_swap_request(self, request_id: str, receiver_id: str) -> Optional[SwapRequest]:
        s = self.swaps.get(request_id)
        if s and s.receiver_id == receiver_id and s.status == SwapStatus.PENDING:
            return s
        return None

    async def update_swap_request(
        self, request_id: str, status: SwapStatus, response_message: Optional[str]
    ) -> SwapRequest:
        s = self.swaps[request_id]
        if s.status != SwapStatus.PENDING:
            raise ConflictError("no longer pending")
        updated = s.model_copy(update={"status": status, "response_message": response_message})
        self.swaps[request_id] = updated
        return updated

    async def set_duty_owner(self, duty_id: str, owner_id: str) -> None:
        self.owner_updates += 1
        if self.owner_updates == self.fail_owner_update_on:
            raise CollaboratorError("storage unreachable", status=503)
        d = self.duties[duty_id]
        self.duties[duty_id] = d.model_copy(update={"user": UserRef(id=owner_id)})

    async def approve_swap_request(
        self, request_id: str, receiver_id: str, response_message: Optional[str]
    ) -> SwapRequest:
        if not self.approve_supported:
            raise CapabilityMissing(
                "Could not find the function public.approve_swap_request",
                status=404,
                backend_code="PGRST202",
            )
        s = self.swaps.get(request_id)
        if s is None or s.receiver_id != receiver_id or s.status != SwapStatus.PENDING:
            raise ConflictError("no longer pending", user_message="Swap request not found or already processed")
        for duty_id, owner_id in ((s.sender_duty_id, s.receiver_id), (s.target_duty_id, s.sender_id)):
            self.duties[duty_id] = self.duties[duty_id].model_copy(update={"user": UserRef(id=owner_id)})
        updated = s.model_copy(update={"status": SwapStatus.APPROVED, "response_message": response_message})
        self.swaps[request_id] = updated
        return updated

    async def insert_notification(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        swap_request_id: Optional[str],
    ) -> None:
        self.notifications.append(
            {"user_id": user_id, "type": type, "title": title, "message": message, "ref": swap_request_id}
        )


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[tuple] = []

    async def notify(self, user_id, type, title, message, ref_id=None) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append((user_id, type, title, message, ref_id))


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
