from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .tier_level import TierLevel
from .product import PRODUCT_STATUSES, Product, PrizeTier, PoolTicket  # noqa: F401
from .draw_record import LAST_ONE_TICKET_NUMBER, DrawRecord  # noqa: F401
from .rate import ProductRateSetting, TierRateAdjustment  # noqa: F401

__all__ = [
    "Base",
    "TierLevel",
    "PRODUCT_STATUSES",
    "Product",
    "PrizeTier",
    "PoolTicket",
    "LAST_ONE_TICKET_NUMBER",
    "DrawRecord",
    "ProductRateSetting",
    "TierRateAdjustment",
]
