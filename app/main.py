# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.limiter import limiter
from app.scheduler import start_scheduler, shutdown_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# This function runs once when the application starts up.
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    if settings.WAITLIST_SCHEDULER_ENABLED:
        start_scheduler()
    yield
    shutdown_scheduler()
    logger.info("Application shutting down...")


app = FastAPI(
    title="Salon Waitlist Service",
    version="1.0.0",
    description="""
        **Salon Waitlist Service**

        Offers freed booking slots to waitlisted customers.

        ## Features

        * **Waitlist intake**: staff and public booking site
        * **Offers**: time-boxed, single-use claim links by SMS and email
        * **Claims**: accept or decline with a token, booked through the calendar
        * **Reconciliation**: expiry, cooldowns, reminders and stale entries

        ## Authentication

        Staff endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        Internal endpoints require the `X-Internal-Api-Key` header.
        Claim endpoints are authorised by the offer token alone.
        """,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

origins = [
    settings.PUBLIC_APP_URL,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Salon Waitlist Service is running"}
