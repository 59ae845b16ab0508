"""Draw endpoint."""

from collections.abc import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kujibox import workflows
from kujibox.api.deps import get_session_factory
from kujibox.api.schemas import DrawRequest, parse_product_id

router = APIRouter()


@router.post("")
def draw(
    body: DrawRequest,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Draw tickets for a user; the whole batch commits or nothing does."""
    outcomes = workflows.run_draw(
        session_factory,
        parse_product_id(body.product_id),
        body.user_id,
        body.count,
        ticket_numbers=body.ticket_numbers,
    )
    return {"success": True, "data": [o.to_json() for o in outcomes]}
