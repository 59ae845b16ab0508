"""Pydantic request schemas.

Fields are optional at the schema level so that a missing field surfaces
as ``MissingParameter`` with the field name, the same way the workflows
report it.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from kujibox.errors import InvalidParameter, MissingParameter


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerifyRequest(CamelModel):
    seed: Any = None
    nonce: Any = None
    expected_hash: Any = None


class DrawRequest(CamelModel):
    product_id: Any = None
    user_id: str | None = None
    count: int | None = None
    ticket_numbers: list[int] | None = None


class PrizeInput(CamelModel):
    level: str | None = None
    name: str | None = None
    total: int | None = None
    probability: float = 0.0
    image_url: str | None = None


class CreateProductRequest(CamelModel):
    name: str | None = None
    image_url: str | None = None
    prizes: list[PrizeInput] | None = None


class RevealRequest(CamelModel):
    force: bool = False


class UpdateRatesRequest(CamelModel):
    product_id: Any = None
    profit_rate: Any = None
    escalation_enabled: bool | None = None
    tier_multipliers: dict[int, float | None] | None = None


def parse_product_id(value: Any) -> int:
    """Accept ``12`` or ``"12"``; anything else is a bad product id."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingParameter("productId")
    if isinstance(value, bool):
        raise InvalidParameter("productId", f"Invalid product id {value!r}")
    if isinstance(value, int):
        product_id = value
    elif isinstance(value, str) and value.strip().isdigit():
        product_id = int(value.strip())
    else:
        raise InvalidParameter("productId", f"Invalid product id {value!r}")
    if product_id <= 0:
        raise InvalidParameter("productId", f"Invalid product id {value!r}")
    return product_id
