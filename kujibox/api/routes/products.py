"""Pool publishing and fairness endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kujibox import workflows
from kujibox.api.deps import get_db
from kujibox.api.schemas import CreateProductRequest, RevealRequest
from kujibox.errors import MissingParameter
from kujibox.models import Product

router = APIRouter()


@router.post("", status_code=201)
def create_product(body: CreateProductRequest, db: Session = Depends(get_db)):
    """Publish a pool. The response carries the commitment, never the seed."""
    if body.prizes is None:
        raise MissingParameter("prizes")
    product = workflows.publish_pool(
        db,
        name=body.name,
        image_url=body.image_url,
        prizes=[p.model_dump() for p in body.prizes],
    )
    return {"success": True, "data": product.to_json()}


@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return {"success": True, "data": Product.require(db, product_id).to_json()}


@router.get("/{product_id}/fairness")
def fairness(product_id: int, db: Session = Depends(get_db)):
    return {"success": True, "data": workflows.get_fairness_info(db, product_id)}


@router.get("/{product_id}/draws")
def draws(
    product_id: int,
    user_id: str | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    """Draw ledger of the pool: ticket, nonce and hash of every draw."""
    return {"success": True, "data": workflows.list_draws(db, product_id, user_id)}


@router.get("/{product_id}/probabilities")
def probabilities(product_id: int, db: Session = Depends(get_db)):
    return {
        "success": True,
        "data": workflows.get_display_probabilities(db, product_id),
    }


@router.post("/{product_id}/reveal")
def reveal(
    product_id: int,
    body: RevealRequest | None = None,
    db: Session = Depends(get_db),
):
    force = body.force if body is not None else False
    product = workflows.reveal_seed(db, product_id, force=force)
    return {"success": True, "data": product.to_json(include_tiers=False)}


@router.post("/{product_id}/deactivate")
def deactivate(product_id: int, db: Session = Depends(get_db)):
    product = workflows.deactivate_pool(db, product_id)
    return {"success": True, "data": product.to_json(include_tiers=False)}
