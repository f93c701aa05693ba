"""
FastAPI Application Entry Point.

This is the main application file for the Rental Billing Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from rental_backend.app.core.config import settings
from rental_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from rental_backend.app.api.v1.router import router as api_v1_router
from rental_backend.app.db.session import engine, Base
from rental_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from rental_backend.app.models.audit_log import AuditLog
from rental_backend.app.models.adjustment_index import AdjustmentIndex  # before contract for FK
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.adjustment_history import AdjustmentHistory
from rental_backend.app.models.service_concept_type import ServiceConceptType
from rental_backend.app.models.property_charge import PropertyCharge
from rental_backend.app.models.monthly_record import MonthlyRecord
from rental_backend.app.models.record_concept import RecordConcept
from rental_backend.app.models.payment_transaction import PaymentTransaction, TransactionConcept
from rental_backend.app.models.property_group import PropertyGroup, PropertyGroupItem
from rental_backend.app.models.debt import Debt, DebtPayment
from rental_backend.app.models.holiday import Holiday

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Disposes the engine pool on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Billing & allocation engine for rental-property contracts",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Rental Billing Backend API",
        "docs": "/docs",
        "health": "/health",
    }
