"""
Error taxonomy for inventory operations.

Every kind carries a fixed title so request handlers can show one specific
message per kind instead of a raw store error.
"""

from __future__ import annotations


class InventoryError(Exception):
    title = "Inventory operation failed"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.title)
        self.message = message or self.title


class ValidationError(InventoryError, ValueError):
    title = "Invalid request"


class NotFoundError(InventoryError):
    title = "Record not found"


class ConflictError(InventoryError):
    """Stock was changed by a concurrent operation; re-fetch before retrying."""

    title = "Stock changed by another operation"


class CapacityError(InventoryError):
    title = "Not enough stock or capacity"


class TransientStoreError(InventoryError):
    title = "Database temporarily unavailable"


def user_message(exc: BaseException) -> str:
    if isinstance(exc, InventoryError):
        if exc.message == exc.title:
            return exc.title
        return f"{exc.title}: {exc.message}"
    return "Unexpected error. Please try again or contact support."
