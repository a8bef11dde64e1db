import os

import uvicorn

from .api import app, logger

# ================= Run Server =================
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8001"))
    logger.info("Starting DutySwap API on port %s", port)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
        access_log=True,
    )
