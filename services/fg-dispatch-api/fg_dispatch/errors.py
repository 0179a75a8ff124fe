"""Utilities for consistent API error responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from .ledger import ConfigurationError, InsufficientCartonStock, InsufficientPieceStock, StockError


def api_error(status_code: int, code: str, message: str, *, headers: dict[str, str] | None = None) -> HTTPException:
    """Create an :class:`HTTPException` with a normalized payload."""

    payload = {"code": code, "message": message}
    return HTTPException(status_code=status_code, detail=payload, headers=headers)


def stock_error(exc: StockError) -> HTTPException:
    """Translate a failed deduction into the response sent to the caller."""

    if isinstance(exc, InsufficientCartonStock):
        return api_error(status.HTTP_400_BAD_REQUEST, "stock.insufficient_cartons", str(exc))
    if isinstance(exc, InsufficientPieceStock):
        return api_error(status.HTTP_400_BAD_REQUEST, "stock.insufficient_pieces", str(exc))
    if isinstance(exc, ConfigurationError):
        return api_error(status.HTTP_400_BAD_REQUEST, "stock.configuration", str(exc))
    return api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "stock.invariant", "Stock ledger is inconsistent")
