from .auth import TokenManager, TokenProvider
from .catalog import CatalogClient

__all__ = ["CatalogClient", "TokenManager", "TokenProvider"]
