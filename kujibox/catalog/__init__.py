from .client import CatalogClient, sync_tier_metadata

__all__ = ["CatalogClient", "sync_tier_metadata"]
