"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from rental_backend.app.api.v1.endpoints import (
    contracts, payments, adjustments, distributions, debts, holidays
)

router = APIRouter()

# Contract State, Period Ledger and Payment Reconciliation
router.include_router(contracts.router)
router.include_router(payments.router)

# Month close and debts
router.include_router(debts.router)
router.include_router(holidays.router)

# Adjustment Index Service
router.include_router(adjustments.router)

# Batch Distribution Allocator
router.include_router(distributions.router)
