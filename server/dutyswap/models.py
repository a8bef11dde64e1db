# models.py
import datetime as dt
import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_HHMM_RE = re.compile(r"^(\d{1,2}):?(\d{2})(?::\d{2})?$")


class _ApiModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_hhmm(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    if not v:
        return None
    m = _HHMM_RE.match(v)
    if not m:
        raise ValueError(f"invalid clock time: {v!r}")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"clock time out of range: {v!r}")
    return f"{hours:02d}:{minutes:02d}"


def _day_start(v):
    # Bare calendar days become midnight
    if isinstance(v, str) and len(v) == 10:
        return dt.datetime.fromisoformat(v)
    if isinstance(v, dt.date) and not isinstance(v, dt.datetime):
        return dt.datetime(v.year, v.month, v.day)
    return v


def _ensure_utc(v: dt.datetime) -> dt.datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=dt.timezone.utc)
    return v


class DutyType(str, Enum):
    FLIGHT = "FLIGHT"
    DEADHEAD = "DEADHEAD"
    STANDBY = "STANDBY"
    OFF = "OFF"
    CHECKIN = "CHECKIN"
    CHECKOUT = "CHECKOUT"
    PICKUP = "PICKUP"


# Marker events are never staged or persisted as legs
IMPORTABLE_TYPES = frozenset(
    {DutyType.FLIGHT, DutyType.DEADHEAD, DutyType.STANDBY, DutyType.OFF}
)


class RawEvent(_ApiModel):
    """One calendar entry from the roster conversion feed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    date: dt.date
    code: str = Field(..., description="Flight number or duty code, e.g. 'EW 6851', 'C/I', 'STBY_S3'")
    departure_time: Optional[str] = Field(default=None, description="HH:MM (UTC)")
    arrival_time: Optional[str] = Field(default=None, description="HH:MM (UTC)")
    departure_location: str = "Unknown"
    arrival_location: str = "Unknown"

    @field_validator("code")
    @classmethod
    def _clean_code(cls, v: str) -> str:
        return " ".join((v or "").split())

    @field_validator("departure_time", "arrival_time", mode="before")
    @classmethod
    def _clean_time(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_hhmm(v)


class ClassifiedEvent(RawEvent):
    type: DutyType


class StagedDutyLeg(_ApiModel):
    id: str
    code: str
    date: dt.date
    dep_time: Optional[str] = None
    arr_time: Optional[str] = None
    dep: str
    arr: str
    type: DutyType
    notes: Optional[str] = None

    @field_validator("dep_time", "arr_time", mode="before")
    @classmethod
    def _clean_time(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_hhmm(v)


class StagedDutyBlock(_ApiModel):
    id: str
    start_date: dt.date
    end_date: dt.date
    type: DutyType
    legs: List[StagedDutyLeg] = Field(default_factory=list)


class UserRef(_ApiModel):
    id: Optional[str] = None
    name: Optional[str] = None


class FlightLeg(_ApiModel):
    id: Optional[str] = None
    flight_number: str
    departure_time: dt.datetime
    arrival_time: dt.datetime
    departure_location: str
    arrival_location: str
    is_deadhead: bool = False

    @field_validator("departure_time", "arrival_time", mode="before")
    @classmethod
    def _day(cls, v):
        return _day_start(v)

    @field_validator("departure_time", "arrival_time")
    @classmethod
    def _utc(cls, v: dt.datetime) -> dt.datetime:
        return _ensure_utc(v)


class Duty(_ApiModel):
    id: str
    date: dt.datetime
    pairing: Optional[str] = None
    legs: List[FlightLeg] = Field(default_factory=list)
    user: Optional[UserRef] = None

    @field_validator("date", mode="before")
    @classmethod
    def _day(cls, v):
        return _day_start(v)

    @field_validator("date")
    @classmethod
    def _utc(cls, v: dt.datetime) -> dt.datetime:
        return _ensure_utc(v)

    @property
    def owner_id(self) -> Optional[str]:
        if self.user and self.user.id:
            return self.user.id
        return None


class SwapStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    CANCELLED = "CANCELLED"


class SwapRequest(_ApiModel):
    id: str
    sender_id: str
    receiver_id: str
    sender_duty_id: str
    target_duty_id: str
    message: Optional[str] = None
    status: SwapStatus = SwapStatus.PENDING
    response_message: Optional[str] = None


class NotificationType(str, Enum):
    SWAP_REQUEST_RECEIVED = "SWAP_REQUEST_RECEIVED"
    SWAP_REQUEST_APPROVED = "SWAP_REQUEST_APPROVED"
    SWAP_REQUEST_DENIED = "SWAP_REQUEST_DENIED"
    SWAP_REQUEST_CANCELLED = "SWAP_REQUEST_CANCELLED"


class SwapPair(_ApiModel):
    offered_id: str
    target_id: str
    receiver_id: str


class PairingResult(_ApiModel):
    pairs: List[SwapPair] = Field(default_factory=list)
    failures: List[str] = Field(default_factory=list)


class PairOutcome(_ApiModel):
    pair: SwapPair
    ok: bool
    swap_request_id: Optional[str] = None
    error: Optional[str] = None


class BatchOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    TOTAL_FAILURE = "TOTAL_FAILURE"
    NO_VALID_REQUESTS = "NO_VALID_REQUESTS"


class BatchResult(_ApiModel):
    outcome: BatchOutcome
    atomic: bool = True
    succeeded: int = 0
    failed: int = 0
    results: List[PairOutcome] = Field(default_factory=list)
    used_fallback: bool = False
    pairing_failures: List[str] = Field(default_factory=list)


class ImportBlockResult(_ApiModel):
    block_id: str
    created_duty_id: Optional[str] = None
    legs_inserted: int = 0
    legs_skipped: int = 0
    error: Optional[str] = None


class ImportResult(_ApiModel):
    results: List[ImportBlockResult] = Field(default_factory=list)
    legs_inserted: int = 0
    legs_skipped: int = 0


# HTTP payloads


class StageIcsRequest(_ApiModel):
    ics: str


class StageResponse(_ApiModel):
    events: List[RawEvent] = Field(default_factory=list)
    blocks: List[StagedDutyBlock] = Field(default_factory=list)


class ImportRequest(_ApiModel):
    blocks: List[StagedDutyBlock] = Field(default_factory=list)


class BatchSwapRequest(_ApiModel):
    requested_duty_ids: List[str] = Field(default_factory=list)
    offered_duty_ids: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    atomic: bool = True

    @field_validator("message")
    @classmethod
    def _blank_message(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class RespondRequest(_ApiModel):
    action: str
    response_message: Optional[str] = None


class RespondResponse(_ApiModel):
    message: str
    swap_request: SwapRequest
