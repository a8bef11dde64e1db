from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

SERVICE_NAME = os.getenv("SERVICE_NAME", "dutyswap")
ENV = os.getenv("APP_ENV", "dev")

# Storage (PostgREST / Supabase REST endpoint)
STORAGE_URL: str = os.getenv("STORAGE_URL", "http://localhost:54321/rest/v1")
STORAGE_API_KEY: str | None = os.getenv("STORAGE_API_KEY")
STORAGE_TIMEOUT_S: float = float(os.getenv("STORAGE_TIMEOUT_S", "10"))

# Server-side transactional batch primitive; optional on the backend
BATCH_SWAP_FUNCTION = os.getenv("BATCH_SWAP_FUNCTION", "batch_create_swap_requests")
# Approval in one transaction: status change plus both owner changes
APPROVE_SWAP_FUNCTION = os.getenv("APPROVE_SWAP_FUNCTION", "approve_swap_request")

# External roster converter (PDF roster -> .ics)
CONVERTER_URL = os.getenv(
    "CONVERTER_URL", "https://www.dienstplankonverter.de/index.php?action=convert"
)
CONVERTER_BASE_URL = os.getenv("CONVERTER_BASE_URL", "https://www.dienstplankonverter.de/")
CONVERTER_TIMEOUT_S: float = float(os.getenv("CONVERTER_TIMEOUT_S", "30"))
CONVERTER_MAX_ATTEMPTS: int = int(os.getenv("CONVERTER_MAX_ATTEMPTS", "3"))
CONVERTER_MAX_FILE_SIZE = 10_000_000

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]

# Staged legs without times span the whole day
DEFAULT_DEPARTURE_TIME = "00:00"
DEFAULT_ARRIVAL_TIME = "23:59"
