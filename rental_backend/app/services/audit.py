"""
Audit logging service for tracking billing-engine mutations.

Rows are added to the caller's transaction (flushed, never committed here),
so an operation that rolls back leaves no audit trail behind.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from rental_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Contract State
    PERIOD_OPENED = "PERIOD_OPENED"
    CONTRACT_EXPIRED = "CONTRACT_EXPIRED"

    # Adjustments
    ADJUSTMENT_APPLIED = "ADJUSTMENT_APPLIED"
    ADJUSTMENT_UNDONE = "ADJUSTMENT_UNDONE"
    INDEX_DELETED = "INDEX_DELETED"

    # Ledger & Payments
    CONCEPT_ADDED = "CONCEPT_ADDED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_DELETED = "PAYMENT_DELETED"

    # Month close & debts
    MONTH_CLOSED = "MONTH_CLOSED"
    DEBT_PAYMENT_RECORDED = "DEBT_PAYMENT_RECORDED"
    HOLIDAY_ADDED = "HOLIDAY_ADDED"

    # Batch distribution
    BATCH_SUBMITTED = "BATCH_SUBMITTED"
    TEMPLATE_SAVED = "TEMPLATE_SAVED"
    TEMPLATE_DELETED = "TEMPLATE_DELETED"


async def log_event(
    db: AsyncSession,
    action: str,
    group_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Log a billing event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        group_id: Tenant group the entity belongs to
        entity_type: Kind of entity acted upon (contract, monthly_record, ...)
        entity_id: ID of the entity acted upon
        actor_username: Username of actor, None for system actions
        metadata: Additional context as JSON (amounts as strings)

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        group_id=group_id,
        actor_username=actor_username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    group_id: Optional[int] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if group_id:
        query = query.where(AuditLog.group_id == group_id)

    if action:
        query = query.where(AuditLog.action == action)

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
