"""Operator rate overlay endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kujibox import workflows
from kujibox.api.deps import get_db, get_operator
from kujibox.api.schemas import UpdateRatesRequest, parse_product_id

router = APIRouter()


@router.get("")
def get_rates(
    product_id: str | None = Query(None, alias="productId"),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": workflows.get_rates(db, parse_product_id(product_id))}


@router.put("")
def update_rates(
    body: UpdateRatesRequest,
    db: Session = Depends(get_db),
    operator: str = Depends(get_operator),
):
    data = workflows.update_rates(
        db,
        parse_product_id(body.product_id),
        body.profit_rate,
        updated_by=operator,
        escalation_enabled=body.escalation_enabled,
        tier_multipliers=body.tier_multipliers,
    )
    return {"success": True, "data": data}
