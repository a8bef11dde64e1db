# pairing.py
"""
Swap pairing: match each requested (target) duty with one of the
requester's offered duties.

Same-date offers are preferred; when none exists the first offered duty is
used as a catch-all.

Pending-request conflicts are not checked here; storage enforces them at
submit time.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from .logging_utils import log_event
from .models import Duty, PairingResult, SwapPair

logger = logging.getLogger("dutyswap.pairing")


def duty_day(duty: Duty) -> dt.date:
    """Calendar day of a duty, truncated in UTC."""
    return duty.date.astimezone(dt.timezone.utc).date()


def _requester_from(self_duties: Sequence[Duty]) -> Optional[str]:
    for d in self_duties:
        if d.owner_id:
            return d.owner_id
    return None


def pair(
    requested: Sequence[Duty],
    offered: Sequence[Duty],
    self_duties: Sequence[Duty] = (),
    requester_id: Optional[str] = None,
) -> PairingResult:
    """
    Build (offered, target, receiver) pairs in `requested` order.

    The requester is `requester_id`, else the owner of `self_duties`, else
    the owner of the offered duties. Targets without an owner, or owned by the
    requester, are reported as failures and skipped. An empty pair list with
    failures is a valid result.
    """
    requester_id = requester_id or _requester_from(self_duties) or _requester_from(offered)
    own_ids = {d.id for d in self_duties}
    failures: List[str] = []

    usable: List[Duty] = []
    for d in offered:
        if requester_id and d.owner_id and d.owner_id != requester_id:
            failures.append(f"Offered duty {d.id} does not belong to the requester")
            continue
        usable.append(d)

    offer_owners = {d.owner_id for d in usable if d.owner_id}

    by_day: Dict[dt.date, List[Duty]] = defaultdict(list)
    for d in usable:
        by_day[duty_day(d)].append(d)

    pairs: List[SwapPair] = []
    same_day_hits = 0

    for target in requested:
        receiver_id = target.owner_id
        if not receiver_id:
            failures.append(f"Invalid target duty {target.id}: no owner")
            continue
        if receiver_id == requester_id or receiver_id in offer_owners or target.id in own_ids:
            failures.append(f"Invalid target duty {target.id}: cannot swap with yourself")
            continue

        same_day = by_day.get(duty_day(target))
        if same_day:
            chosen = same_day[0]
            same_day_hits += 1
        elif usable:
            chosen = usable[0]
        else:
            failures.append(f"No offered duty available for {target.id}")
            continue

        pairs.append(SwapPair(offered_id=chosen.id, target_id=target.id, receiver_id=receiver_id))

    log_event(
        logger,
        "pairing_completed",
        requested=len(requested),
        offered=len(offered),
        pairs=len(pairs),
        same_day=same_day_hits,
        failures=len(failures),
    )
    return PairingResult(pairs=pairs, failures=failures)
