"""
Hotel Booking API - Main Application Entry Point

Hosts two authorities that never share a transaction:
- Reservation authority (/bookings): drives each booking through a saga
- Inventory authority (/rooms): idempotent, leased holds on rooms

The saga reaches the rooms only through the inventory gateway, with the
request's correlation id threaded through every call.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hotel_booking.core.config import get_settings
from hotel_booking.core.logging import setup_logging, get_logger
from hotel_booking.core.metrics import metrics_endpoint
from hotel_booking.api.router import api_router
from hotel_booking.api.middleware import RequestLoggingMiddleware
from hotel_booking.services.gateway_factory import close_inventory_gateway

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        inventory_gateway=settings.INVENTORY_GATEWAY,
    )

    yield

    await close_inventory_gateway()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Hotel booking API with saga-coordinated, idempotent room holds",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "inventory_gateway": settings.INVENTORY_GATEWAY,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
