"""Draw verification endpoint."""

from fastapi import APIRouter

from kujibox import workflows
from kujibox.api.schemas import VerifyRequest

router = APIRouter()


@router.post("")
def verify(body: VerifyRequest):
    """Recompute a draw's hash and random value from its revealed seed."""
    result = workflows.verify(body.seed, body.nonce, body.expected_hash)
    return {"success": True, "data": result.to_json()}
