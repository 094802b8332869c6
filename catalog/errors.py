"""
Error taxonomy for the catalog service
"""
from typing import List, Optional


class CatalogError(Exception):
    """Base class for every error raised by the catalog service."""


class InvalidRequest(CatalogError):
    """Missing or out-of-range request parameters."""


class ForbiddenTarget(CatalogError):
    """Relay target outside the allow-listed upstream hosts."""


class TransportFailure(CatalogError):
    def __init__(self, strategy: str, message: str):
        super().__init__(f"{strategy}: {message}")
        self.strategy = strategy


class ShapeViolation(CatalogError):
    def __init__(self, message: str, strategy: Optional[str] = None):
        super().__init__(f"{strategy}: {message}" if strategy else message)
        self.strategy = strategy


class AllStrategiesExhausted(CatalogError):
    """Every configured strategy failed for a single target."""

    def __init__(self, last_error: str, attempted: List[str]):
        super().__init__(f"All strategies failed, last error: {last_error}")
        self.last_error = last_error
        self.attempted = list(attempted)


class TagAlreadyExists(CatalogError):
    pass


class ProtectedTag(CatalogError):
    pass
