# patterns.py
import re


class Patterns:
    # "EW 6851 HAJ - PMI", "DH/EW 9575 PMI - DUS"
    FLIGHT_SUMMARY = re.compile(r"^(.*?)\s+([A-Z]{3})\s*-\s*([A-Z]{3})\s*$")
    MARKER_SUMMARY = re.compile(r"^(Checkin|Checkout|Pickup)\s+([A-Z]{3})", re.IGNORECASE)
    OFF_SUMMARY = re.compile(r"^Off\s+([A-Z]{3})", re.IGNORECASE)
    STANDBY_SUMMARY = re.compile(r"^Standby\s+([A-Z]{3})", re.IGNORECASE)
    # Full duty code including standby level, e.g. STBY_S3
    DUTY_CODE = re.compile(r"DutyCode:\s*([A-Z0-9/_-]+)", re.IGNORECASE)
    ICS_DATE = re.compile(r"^\d{8}$")
    ICS_DATETIME = re.compile(r"^(\d{8})T(\d{6})")
    VALUE_DATE = re.compile(r";VALUE=DATE(?!-)", re.IGNORECASE)
    # Converter result page: first link inside the modal footer
    DOWNLOAD_LINK = re.compile(
        r"class=[\"'][^\"']*\bmodal-footer\b[^\"']*[\"'][^>]*>.*?<a\b[^>]*?\bhref=[\"']([^\"']+)[\"']",
        re.IGNORECASE | re.DOTALL,
    )


patterns = Patterns()
