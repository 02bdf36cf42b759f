import logging
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI

from lifesync.api.v1 import emergencies
from lifesync.config import get_log_level
from lifesync.core.incident_store import COLLECTION

load_dotenv()
app = FastAPI(title="LifeSync incident store")


# Define a filter to exclude /health endpoint from logs
class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return "GET /health" not in record.getMessage()


# Configure logging
logging.basicConfig(
    level=get_log_level(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Add the filter to the uvicorn access logger
logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())

app.include_router(emergencies.router, prefix="/api/v1")


@app.on_event("shutdown")
async def shutdown_event():
    await emergencies.get_incident_store().close()
    logger.info("Incident store subscriptions released")


@app.get("/health")
async def read_health():
    """
    Checks the health of the store service.

    Returns the number of stored incidents and live subscriptions.
    """
    store = emergencies.get_incident_store()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "incident_store": {
                "status": "healthy",
                "incidents": store.record_count(COLLECTION),
                "subscriptions": store.subscription_count(),
            }
        },
    }
