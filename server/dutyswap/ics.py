# ics.py
"""
Parser for the roster converter's iCalendar export.

Turns VEVENT entries into RawEvent rows:
  - "EW 6851 HAJ - PMI"        → code "EW 6851", HAJ → PMI
  - "DH/EW 9575 PMI - DUS"     → code "DH/EW 9575"
  - "Checkin HAJ"              → DutyCode from DESCRIPTION (e.g. "C/I")
  - "Off HAJ" / "Standby HAJ"  → DutyCode, or "OFF" / "STBY"
"""

import datetime as dt
import logging
from typing import Dict, List, Optional, Tuple

from .logging_utils import log_event
from .models import RawEvent
from .patterns import patterns

logger = logging.getLogger("dutyswap.ics")

UNKNOWN = "Unknown"

# Marker summaries without a DutyCode fall back to the classifier's codes
_MARKER_CODES = {"CHECKIN": "C/I", "CHECKOUT": "C/O", "PICKUP": "PICKUP"}


def _unfold(text: str) -> List[str]:
    # RFC 5545: continuation lines begin with a space or tab
    lines: List[str] = []
    for raw in text.splitlines():
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        else:
            lines.append(raw)
    return lines


def _collect_events(lines: List[str]) -> List[Dict[str, str]]:
    events: List[Dict[str, str]] = []
    current: Optional[Dict[str, str]] = None

    for line in lines:
        if line == "BEGIN:VEVENT":
            current = {}
            continue
        if line == "END:VEVENT":
            if current is not None:
                events.append(current)
            current = None
            continue
        if current is None:
            continue

        key_part, sep, value = line.partition(":")
        if not sep:
            continue
        base_key = key_part.split(";")[0].upper()
        current[base_key] = value
        if base_key in ("DTSTART", "DTEND") and patterns.VALUE_DATE.search(key_part):
            current[f"{base_key}_TYPE"] = "DATE"

    return events


def _parse_stamp(value: Optional[str], value_type: Optional[str]) -> Tuple[Optional[dt.date], Optional[str]]:
    """DTSTART/DTEND → (date, "HH:MM" or None). Times stay in the feed's zone (UTC when 'Z')."""
    if not value:
        return None, None
    if value_type == "DATE" or patterns.ICS_DATE.match(value):
        return dt.datetime.strptime(value[:8], "%Y%m%d").date(), None
    m = patterns.ICS_DATETIME.match(value)
    if m:
        day = dt.datetime.strptime(m.group(1), "%Y%m%d").date()
        t = m.group(2)
        return day, f"{t[:2]}:{t[2:4]}"
    return None, None


def _code_and_route(summary: str, location: str, duty_code: str) -> Tuple[str, str, str]:
    fm = patterns.FLIGHT_SUMMARY.match(summary)
    if fm:
        ident = " ".join(fm.group(1).split())
        return ident, fm.group(2), fm.group(3)

    marker = patterns.MARKER_SUMMARY.match(summary)
    if marker:
        station = marker.group(2).upper()
        return duty_code or _MARKER_CODES[marker.group(1).upper()], station, station

    off = patterns.OFF_SUMMARY.match(summary)
    if off:
        station = off.group(1).upper()
        return duty_code or "OFF", station, station

    stby = patterns.STANDBY_SUMMARY.match(summary)
    if stby:
        station = stby.group(1).upper()
        return duty_code or "STBY", station, station

    station = location or UNKNOWN
    return duty_code or UNKNOWN, station, station


def parse_ics(ics_content: str) -> List[RawEvent]:
    """Parse converter ICS text into RawEvents, in feed order."""
    events = _collect_events(_unfold(ics_content))
    parsed: List[RawEvent] = []
    skipped = 0

    for ev in events:
        summary = ev.get("SUMMARY", "").strip()
        location = ev.get("LOCATION", "").strip()
        description = ev.get("DESCRIPTION", "").replace("\\n", "\n")
        dm = patterns.DUTY_CODE.search(description)
        duty_code = dm.group(1).upper() if dm else ""

        start_day, start_time = _parse_stamp(ev.get("DTSTART"), ev.get("DTSTART_TYPE"))
        _, end_time = _parse_stamp(ev.get("DTEND"), ev.get("DTEND_TYPE"))

        if start_day is None:
            skipped += 1
            log_event(logger, "ics_event_skipped_no_date", level=logging.WARNING, summary=summary)
            continue

        code, dep, arr = _code_and_route(summary, location, duty_code)
        parsed.append(
            RawEvent(
                date=start_day,
                code=code,
                departure_time=start_time,
                arrival_time=end_time,
                departure_location=dep,
                arrival_location=arr,
            )
        )

    log_event(logger, "ics_parsed", events=len(events), parsed=len(parsed), skipped=skipped)
    return parsed
