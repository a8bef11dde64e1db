from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import aiohttp

from .config import (
    APPROVE_SWAP_FUNCTION,
    BATCH_SWAP_FUNCTION,
    STORAGE_API_KEY,
    STORAGE_TIMEOUT_S,
    STORAGE_URL,
)
from .dedup import iso_instant
from .errors import (
    CapabilityMissing,
    CollaboratorError,
    ConflictError,
    DutySwapError,
    ValidationError,
)
from .logging_utils import log_event
from .models import (
    Duty,
    FlightLeg,
    NotificationType,
    PairOutcome,
    SwapPair,
    SwapRequest,
    SwapStatus,
    UserRef,
)

logger = logging.getLogger("dutyswap.storage")

# PostgREST: function not in schema cache / Postgres: undefined_function
MISSING_FUNCTION_CODES = {"PGRST202", "42883"}
UNIQUE_VIOLATION = "23505"
# RAISE EXCEPTION inside the batch function (atomic abort)
RAISED_EXCEPTION = "P0001"

_LEG_COLUMNS = "id,flight_number,departure_time,arrival_time,departure_location,arrival_location,is_deadhead"
_DUTY_SELECT = f"id,date,pairing,user_id,flight_legs({_LEG_COLUMNS})"


class Storage(Protocol):
    """Persistence operations the core depends on."""

    async def list_legs(self, owner_id: str, start: datetime, end: datetime) -> List[FlightLeg]: ...

    async def insert_duty(self, owner_id: str, date: datetime, pairing: Optional[str]) -> str: ...

    async def insert_legs(self, duty_id: str, legs: Sequence[FlightLeg]) -> None: ...

    async def delete_duty(self, duty_id: str) -> None: ...

    async def batch_create_swap_requests(
        self,
        sender_id: str,
        pairs: Sequence[SwapPair],
        global_message: Optional[str],
        atomic: bool,
    ) -> List[PairOutcome]: ...

    async def create_swap_request(
        self, sender_id: str, pair: SwapPair, message: Optional[str]
    ) -> SwapRequest: ...

    async def get_duties(self, duty_ids: Sequence[str]) -> List[Duty]: ...

    async def list_duties(self, owner_id: str) -> List[Duty]: ...

    async def get_pending_swap_request(
        self, request_id: str, receiver_id: str
    ) -> Optional[SwapRequest]: ...

    async def update_swap_request(
        self, request_id: str, status: SwapStatus, response_message: Optional[str]
    ) -> SwapRequest: ...

    async def set_duty_owner(self, duty_id: str, owner_id: str) -> None: ...

    async def approve_swap_request(
        self, request_id: str, receiver_id: str, response_message: Optional[str]
    ) -> SwapRequest: ...

    async def insert_notification(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        swap_request_id: Optional[str],
    ) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# ERROR + ROW MAPPING
# ─────────────────────────────────────────────────────────────────────────────


def _parse_details(details: Any) -> Any:
    if isinstance(details, str):
        try:
            return json.loads(details)
        except ValueError:
            return details
    return details


def map_error(status: int, body: Any) -> DutySwapError:
    """Translate a PostgREST error response into the error taxonomy by code."""
    body = body if isinstance(body, dict) else {}
    code = str(body.get("code") or "")
    message = body.get("message") or f"storage request failed with HTTP {status}"
    details = _parse_details(body.get("details"))

    if code in MISSING_FUNCTION_CODES:
        return CapabilityMissing(message, status=status, backend_code=code, details=details)
    if code == UNIQUE_VIOLATION:
        return ConflictError(message, user_message="A matching record already exists")
    if code == RAISED_EXCEPTION:
        return ConflictError(message, user_message="The batch was rejected", details=details)
    return CollaboratorError(message, status=status, backend_code=code or None, details=details)


def _leg_from_row(row: Dict[str, Any]) -> FlightLeg:
    return FlightLeg(
        id=str(row["id"]) if row.get("id") is not None else None,
        flight_number=row["flight_number"],
        departure_time=row["departure_time"],
        arrival_time=row["arrival_time"],
        departure_location=row["departure_location"],
        arrival_location=row["arrival_location"],
        is_deadhead=bool(row.get("is_deadhead")),
    )


def _duty_from_row(row: Dict[str, Any]) -> Duty:
    legs = sorted(
        (_leg_from_row(r) for r in row.get("flight_legs") or []),
        key=lambda leg: leg.departure_time,
    )
    owner = row.get("user_id")
    return Duty(
        id=str(row["id"]),
        date=row["date"],
        pairing=row.get("pairing"),
        legs=legs,
        user=UserRef(id=str(owner)) if owner else None,
    )


def _swap_from_row(row: Dict[str, Any]) -> SwapRequest:
    return SwapRequest(
        id=str(row["id"]),
        sender_id=str(row["sender_id"]),
        receiver_id=str(row["receiver_id"]),
        sender_duty_id=str(row["sender_duty_id"]),
        target_duty_id=str(row["target_duty_id"]),
        message=row.get("message"),
        status=row.get("status") or SwapStatus.PENDING,
        response_message=row.get("response_message"),
    )


def outcomes_from_rows(pairs: Sequence[SwapPair], rows: Any) -> List[PairOutcome]:
    """
    Match the batch function's per-request rows back to the submitted pairs.

    Rows look like {"sender_duty_id", "target_duty_id", "ok", "id", "error"};
    a pair with no matching row counts as failed.
    """
    if isinstance(rows, dict):
        rows = rows.get("results") or []
    by_key: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for r in rows or []:
        if isinstance(r, dict):
            by_key[(str(r.get("sender_duty_id")), str(r.get("target_duty_id")))] = r

    outcomes: List[PairOutcome] = []
    for p in pairs:
        r = by_key.get((p.offered_id, p.target_id))
        if r is None:
            outcomes.append(PairOutcome(pair=p, ok=False, error="no result returned for this pair"))
            continue
        ok = bool(r.get("ok", r.get("success", False)))
        outcomes.append(
            PairOutcome(
                pair=p,
                ok=ok,
                swap_request_id=str(r["id"]) if ok and r.get("id") is not None else None,
                error=None if ok else (r.get("error") or "rejected"),
            )
        )
    return outcomes


# ─────────────────────────────────────────────────────────────────────────────
# REST CLIENT
# ─────────────────────────────────────────────────────────────────────────────


class RestStorage:
    """
    PostgREST (Supabase REST) storage client.

    Errors are mapped by backend code, never by message text. No retries:
    failures propagate to the caller.
    """

    def __init__(
        self,
        base_url: str = STORAGE_URL,
        api_key: Optional[str] = STORAGE_API_KEY,
        timeout_s: float = STORAGE_TIMEOUT_S,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            self._headers["apikey"] = api_key
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "RestStorage":
        timeout = aiohttp.ClientTimeout(total=self._timeout_s, connect=3)
        self._session = aiohttp.ClientSession(headers=self._headers, timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[List[Tuple[str, str]]] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        if not self._session:
            raise CollaboratorError("storage session is not open")

        headers = {"Prefer": prefer} if prefer else None
        url = f"{self._base_url}{path}"
        t0 = time.perf_counter()
        try:
            async with self._session.request(
                method, url, params=params, json=payload, headers=headers
            ) as r:
                status = r.status
                text = await r.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log_event(logger, "storage_transport_error", level=logging.ERROR, method=method, path=path, error=str(e))
            raise CollaboratorError(f"storage unreachable: {e}") from e

        log_event(
            logger,
            "storage_request",
            level=logging.DEBUG,
            method=method,
            path=path,
            status=status,
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )

        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except ValueError:
                body = text

        if status >= 400:
            err = map_error(status, body)
            log_event(
                logger,
                "storage_error",
                level=logging.WARNING,
                method=method,
                path=path,
                status=status,
                code=err.code,
            )
            raise err
        return body

    # Duties + legs

    async def list_legs(self, owner_id: str, start: datetime, end: datetime) -> List[FlightLeg]:
        rows = await self._request(
            "GET",
            "/duties",
            params=[
                ("select", f"id,flight_legs({_LEG_COLUMNS})"),
                ("user_id", f"eq.{owner_id}"),
                ("date", f"gte.{iso_instant(start)}"),
                ("date", f"lte.{iso_instant(end)}"),
            ],
        )
        return [_leg_from_row(leg) for duty in rows or [] for leg in duty.get("flight_legs") or []]

    async def insert_duty(self, owner_id: str, date: datetime, pairing: Optional[str]) -> str:
        rows = await self._request(
            "POST",
            "/duties",
            payload={"user_id": owner_id, "date": iso_instant(date), "pairing": pairing},
            prefer="return=representation",
        )
        if not rows:
            raise CollaboratorError("duty insert returned no row")
        return str(rows[0]["id"])

    async def insert_legs(self, duty_id: str, legs: Sequence[FlightLeg]) -> None:
        await self._request(
            "POST",
            "/flight_legs",
            payload=[
                {
                    "duty_id": duty_id,
                    "flight_number": leg.flight_number,
                    "departure_time": iso_instant(leg.departure_time),
                    "arrival_time": iso_instant(leg.arrival_time),
                    "departure_location": leg.departure_location,
                    "arrival_location": leg.arrival_location,
                    "is_deadhead": leg.is_deadhead,
                }
                for leg in legs
            ],
            prefer="return=minimal",
        )

    async def delete_duty(self, duty_id: str) -> None:
        await self._request("DELETE", "/duties", params=[("id", f"eq.{duty_id}")], prefer="return=minimal")

    async def get_duties(self, duty_ids: Sequence[str]) -> List[Duty]:
        if not duty_ids:
            return []
        rows = await self._request(
            "GET",
            "/duties",
            params=[("select", _DUTY_SELECT), ("id", f"in.({','.join(duty_ids)})")],
        )
        return [_duty_from_row(r) for r in rows or []]

    async def list_duties(self, owner_id: str) -> List[Duty]:
        rows = await self._request(
            "GET",
            "/duties",
            params=[("select", _DUTY_SELECT), ("user_id", f"eq.{owner_id}"), ("order", "date.asc")],
        )
        return [_duty_from_row(r) for r in rows or []]

    async def set_duty_owner(self, duty_id: str, owner_id: str) -> None:
        await self._request(
            "PATCH",
            "/duties",
            params=[("id", f"eq.{duty_id}")],
            payload={"user_id": owner_id},
            prefer="return=minimal",
        )

    # Swap requests

    async def batch_create_swap_requests(
        self,
        sender_id: str,
        pairs: Sequence[SwapPair],
        global_message: Optional[str],
        atomic: bool,
    ) -> List[PairOutcome]:
        payload = {
            "sender_id": sender_id,
            "requests": [
                {
                    "sender_duty_id": p.offered_id,
                    "target_duty_id": p.target_id,
                    "receiver_id": p.receiver_id,
                }
                for p in pairs
            ],
            "global_message": global_message,
            "atomic": atomic,
        }
        rows = await self._request("POST", f"/rpc/{BATCH_SWAP_FUNCTION}", payload=payload)
        return outcomes_from_rows(pairs, rows)

    async def create_swap_request(
        self, sender_id: str, pair: SwapPair, message: Optional[str]
    ) -> SwapRequest:
        own = await self._request(
            "GET",
            "/duties",
            params=[("select", "id"), ("id", f"eq.{pair.offered_id}"), ("user_id", f"eq.{sender_id}")],
        )
        if not own:
            raise ValidationError(f"Invalid sender duty {pair.offered_id}")

        target = await self._request(
            "GET",
            "/duties",
            params=[("select", "id"), ("id", f"eq.{pair.target_id}"), ("user_id", f"eq.{pair.receiver_id}")],
        )
        if not target:
            raise ValidationError(f"Invalid target duty {pair.target_id}")

        pending = await self._request(
            "GET",
            "/swap_requests",
            params=[
                ("select", "id"),
                ("sender_duty_id", f"eq.{pair.offered_id}"),
                ("target_duty_id", f"eq.{pair.target_id}"),
                ("status", f"eq.{SwapStatus.PENDING.value}"),
            ],
        )
        if pending:
            raise ConflictError(
                f"pending swap request exists for {pair.offered_id} -> {pair.target_id}",
                user_message="A swap request already exists for these duties",
            )

        rows = await self._request(
            "POST",
            "/swap_requests",
            payload={
                "sender_id": sender_id,
                "receiver_id": pair.receiver_id,
                "sender_duty_id": pair.offered_id,
                "target_duty_id": pair.target_id,
                "message": message,
                "status": SwapStatus.PENDING.value,
            },
            prefer="return=representation",
        )
        if not rows:
            raise CollaboratorError("swap request insert returned no row")
        return _swap_from_row(rows[0])

    async def get_pending_swap_request(
        self, request_id: str, receiver_id: str
    ) -> Optional[SwapRequest]:
        rows = await self._request(
            "GET",
            "/swap_requests",
            params=[
                ("select", "*"),
                ("id", f"eq.{request_id}"),
                ("receiver_id", f"eq.{receiver_id}"),
                ("status", f"eq.{SwapStatus.PENDING.value}"),
            ],
        )
        return _swap_from_row(rows[0]) if rows else None

    async def update_swap_request(
        self, request_id: str, status: SwapStatus, response_message: Optional[str]
    ) -> SwapRequest:
        # Only a PENDING request transitions; a concurrent response finds nothing
        rows = await self._request(
            "PATCH",
            "/swap_requests",
            params=[("id", f"eq.{request_id}"), ("status", f"eq.{SwapStatus.PENDING.value}")],
            payload={"status": status.value, "response_message": response_message},
            prefer="return=representation",
        )
        if not rows:
            raise ConflictError(
                f"swap request {request_id} is no longer pending",
                user_message="Swap request not found or already processed",
            )
        return _swap_from_row(rows[0])

    async def approve_swap_request(
        self, request_id: str, receiver_id: str, response_message: Optional[str]
    ) -> SwapRequest:
        """
        Approve and exchange duty owners in one server-side transaction.

        Raises CapabilityMissing when the function is not deployed.
        """
        rows = await self._request(
            "POST",
            f"/rpc/{APPROVE_SWAP_FUNCTION}",
            payload={
                "request_id": request_id,
                "receiver_id": receiver_id,
                "response_message": response_message,
            },
        )
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise ConflictError(
                f"swap request {request_id} is no longer pending",
                user_message="Swap request not found or already processed",
            )
        return _swap_from_row(rows[0])

    # Notifications

    async def insert_notification(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        swap_request_id: Optional[str],
    ) -> None:
        await self._request(
            "POST",
            "/notifications",
            payload={
                "user_id": user_id,
                "type": type.value,
                "title": title,
                "message": message,
                "swap_request_id": swap_request_id,
                "is_read": False,
            },
            prefer="return=minimal",
        )
