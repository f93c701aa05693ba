"""
Batch Distribution API endpoints.

The rebalance endpoint runs one reducer step over the working set the
caller holds; nothing is stored until the batch is submitted.
"""

from fastapi import APIRouter, Depends, Path, Header, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from rental_backend.app.db.session import get_db
from rental_backend.app.core.exceptions import InvalidDistributionError
from rental_backend.app.schemas.distribution import (
    RebalanceRequest, DistributionStateResponse, ShareSchema, BatchSubmit, BatchResponse,
    BatchLineResponse, TemplateCreate, TemplateResponse, TemplateItemSchema, TemplateLoadRequest
)
from rental_backend.app.domain.billing import distribution
from rental_backend.app.domain.billing.batch_service import DistributionItem
from rental_backend.app.domain.billing.billing_service import BillingService

router = APIRouter(prefix="/groups/{group_id}", tags=["Batch Distribution"])


def state_response(state: distribution.DistributionState, outcome: Optional[distribution.EditOutcome] = None) -> DistributionStateResponse:
    allocation = distribution.allocate(state.shares, state.total_amount)
    return DistributionStateResponse(
        phase=state.phase,
        shares=[ShareSchema.model_validate(s) for s in state.shares],
        percentage_sum=state.percentage_sum,
        amounts=allocation.amounts,
        residual=allocation.residual,
        accepted=outcome.accepted if outcome else True,
        message=outcome.message if outcome else None,
    )


@router.post("/distributions/rebalance", response_model=DistributionStateResponse)
async def rebalance(
    body: RebalanceRequest,
    group_id: int = Path(..., description="Group ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Apply one reducer step (select, start, set, unlock, confirm).

    Every record named must belong to the group. A rejected percentage edit
    is reported with accepted=false and the working set unchanged.
    """
    named = list(body.record_ids) + [s.record_id for s in body.shares]
    if body.record_id is not None:
        named.append(body.record_id)
    contract_ids = await BillingService.records_in_group(db, group_id, named)

    state = distribution.DistributionState(
        phase=distribution.Phase.DISTRIBUTION if body.shares else distribution.Phase.SELECTION,
        shares=tuple(
            distribution.Share(record_id=s.record_id, percentage=s.percentage, locked=s.locked, contract_id=contract_ids[s.record_id])
            for s in body.shares
        ),
        total_amount=body.total_amount,
    )

    outcome = None
    if body.action == "select":
        state = distribution.select(state, body.record_ids, contract_ids)
    elif body.action == "start":
        state = distribution.start_distribution(state)
    elif body.action == "confirm":
        state = distribution.confirm(state)
    else:
        if body.record_id is None:
            raise InvalidDistributionError(f"Action '{body.action}' needs a record_id")
        if body.action == "unlock":
            state = distribution.unlock(state, body.record_id)
        else:
            if body.value is None:
                raise InvalidDistributionError("Action 'set' needs a value")
            outcome = distribution.edit(state, body.record_id, body.value)
            state = outcome.state

    return state_response(state, outcome)


@router.post("/batch-distributions", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
async def submit_batch(
    body: BatchSubmit,
    group_id: int = Path(..., description="Group ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Submit a batch distribution. All records are updated or none.
    """
    result = await BillingService.submit_batch(
        db, group_id, body.period_month, body.period_year, body.concept_type_id, body.total_amount,
        [DistributionItem(record_id=d.record_id, percentage=d.percentage, amount=d.amount, version=d.version)
         for d in body.distributions],
        description=body.description,
        template_name=body.template_name,
        actor_username=actor,
    )
    await db.commit()
    return BatchResponse(
        concept_type=result.concept_type,
        total_amount=result.total_amount,
        lines=[BatchLineResponse.model_validate(line) for line in result.lines],
        residual=result.residual,
        template_id=result.template_id,
    )


@router.post("/distribution-templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def save_template(
    body: TemplateCreate,
    group_id: int = Path(..., description="Group ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    """
    Create or replace a named distribution template.
    """
    template, items = await BillingService.save_distribution_template(
        db, group_id, body.name, {i.contract_id: i.percentage for i in body.items}, actor_username=actor
    )
    response = TemplateResponse(
        id=template.id,
        name=template.name,
        items=[TemplateItemSchema.model_validate(i) for i in items],
    )
    await db.commit()
    return response


@router.get("/distribution-templates", response_model=List[TemplateResponse])
async def list_templates(
    group_id: int = Path(..., description="Group ID"),
    db: AsyncSession = Depends(get_db)
):
    templates = await BillingService.list_templates(db, group_id)
    return [
        TemplateResponse(id=t.id, name=t.name, items=[TemplateItemSchema.model_validate(i) for i in items])
        for t, items in templates
    ]


@router.delete("/distribution-templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    group_id: int = Path(..., description="Group ID"),
    template_id: int = Path(..., description="Template ID"),
    actor: Optional[str] = Header(None, alias="X-Actor"),
    db: AsyncSession = Depends(get_db)
):
    await BillingService.delete_template(db, group_id, template_id, actor_username=actor)
    await db.commit()


@router.post("/distribution-templates/{template_id}/load", response_model=DistributionStateResponse)
async def load_template(
    body: TemplateLoadRequest,
    group_id: int = Path(..., description="Group ID"),
    template_id: int = Path(..., description="Template ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Working set for a period, pre-selected and locked from a template.
    """
    state = await BillingService.distribution_from_template(
        db, group_id, template_id, body.period_month, body.period_year, body.total_amount
    )
    return state_response(state)
