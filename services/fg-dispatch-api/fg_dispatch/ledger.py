"""Carton/piece stock deduction for finished goods.

Stock of a product is held in three buckets:

* ``available_cartons``: sealed cartons of ``units_per_carton`` pieces,
* ``available_pieces``: loose pieces never packed in a carton,
* ``broken_carton_pieces``: pieces left over from cartons opened earlier.

Piece requests drain broken-carton pieces first, then loose pieces, and only
then open sealed cartons one at a time, so the number of open cartons stays
as small as possible. :func:`issue_stock` never mutates its input and either
returns the complete new state or raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

ISSUE_CARTON = "Carton"
ISSUE_PIECES = "Pieces"
ISSUE_BOTH = "Both"
ISSUE_TYPES = (ISSUE_CARTON, ISSUE_PIECES, ISSUE_BOTH)


class StockError(Exception):
    """Base class for failures of a stock deduction."""


class ConfigurationError(StockError):
    """Master data needed for the carton/piece conversion is missing."""


class InsufficientStockError(StockError):
    unit = "units"

    def __init__(self, deficit: int, available: int) -> None:
        self.deficit = deficit
        self.available = available
        super().__init__(
            f"Insufficient {self.unit[:-1]} stock. Need {deficit} more {self.unit} "
            f"(only {available} available)."
        )


class InsufficientCartonStock(InsufficientStockError):
    unit = "cartons"


class InsufficientPieceStock(InsufficientStockError):
    unit = "pieces"


class StockInvariantError(StockError):
    """The computed state breaks the carton/piece identity."""


@dataclass(frozen=True)
class StockLevels:
    available_cartons: int = 0
    available_pieces: int = 0
    broken_carton_pieces: int = 0

    @classmethod
    def of(cls, record) -> "StockLevels":
        return cls(
            available_cartons=record.available_cartons or 0,
            available_pieces=record.available_pieces or 0,
            broken_carton_pieces=record.broken_carton_pieces or 0,
        )

    def total(self, units_per_carton: int) -> int:
        return self.available_cartons * units_per_carton + self.available_pieces + self.broken_carton_pieces

    def apply_to(self, record) -> None:
        record.available_cartons = self.available_cartons
        record.available_pieces = self.available_pieces
        record.broken_carton_pieces = self.broken_carton_pieces

    def as_dict(self) -> dict[str, int]:
        return {
            "available_cartons": self.available_cartons,
            "available_pieces": self.available_pieces,
            "broken_carton_pieces": self.broken_carton_pieces,
        }


def check_units_per_carton(units_per_carton: int | None) -> int:
    if not units_per_carton or units_per_carton < 1:
        raise ConfigurationError("Units per carton is not configured for this product.")
    return int(units_per_carton)


def adopt_units_per_carton(levels: StockLevels, current: int | None, new: int | None) -> int:
    """Carton size a stock record may switch to without recounting its sealed cartons.

    Loose and broken-carton pieces do not depend on the carton size, so a new
    size is only accepted while no sealed carton is held.
    """

    units = check_units_per_carton(new)
    if current and current != units and levels.available_cartons > 0:
        raise ConfigurationError(
            f"Units per carton cannot change from {current} to {units} while "
            f"{levels.available_cartons} sealed cartons are in stock."
        )
    return units


def obtainable_pieces(levels: StockLevels, units_per_carton: int) -> int:
    """Pieces that can be issued, counting every sealed carton as breakable."""

    return levels.broken_carton_pieces + levels.available_pieces + levels.available_cartons * units_per_carton


def issue_cartons(levels: StockLevels, cartons: int) -> StockLevels:
    if cartons < 0:
        raise ValueError("Carton quantity cannot be negative")
    if cartons > levels.available_cartons:
        raise InsufficientCartonStock(cartons - levels.available_cartons, levels.available_cartons)
    return replace(levels, available_cartons=levels.available_cartons - cartons)


def issue_pieces(levels: StockLevels, pieces: int, units_per_carton: int) -> StockLevels:
    if pieces < 0:
        raise ValueError("Piece quantity cannot be negative")
    obtainable = obtainable_pieces(levels, units_per_carton)
    if pieces > obtainable:
        raise InsufficientPieceStock(pieces - obtainable, obtainable)

    cartons = levels.available_cartons
    loose = levels.available_pieces
    broken = levels.broken_carton_pieces
    remaining = pieces

    taken = min(broken, remaining)
    broken -= taken
    remaining -= taken

    taken = min(loose, remaining)
    loose -= taken
    remaining -= taken

    while remaining > 0 and cartons > 0:
        cartons -= 1
        broken += units_per_carton
        taken = min(broken, remaining)
        broken -= taken
        remaining -= taken

    # unreachable after the obtainable check
    if remaining > 0:
        raise StockInvariantError(f"{remaining} pieces left unissued after draining all sources")

    return StockLevels(available_cartons=cartons, available_pieces=loose, broken_carton_pieces=broken)


def issue_stock(
    levels: StockLevels,
    units_per_carton: int | None,
    issue_type: str,
    *,
    carton_quantity: int = 0,
    piece_quantity: int = 0,
) -> StockLevels:
    """Return the stock left after issuing the requested cartons and pieces.

    ``Carton`` issues only ``carton_quantity``, ``Pieces`` only
    ``piece_quantity``. ``Both`` takes the cartons first, so the piece step can
    only break cartons that were not issued whole.
    """

    units = check_units_per_carton(units_per_carton)
    if issue_type not in ISSUE_TYPES:
        raise ValueError(f"Unknown issue type {issue_type!r}")

    cartons = carton_quantity if issue_type in (ISSUE_CARTON, ISSUE_BOTH) else 0
    pieces = piece_quantity if issue_type in (ISSUE_PIECES, ISSUE_BOTH) else 0

    result = levels
    if cartons:
        result = issue_cartons(result, cartons)
    if pieces:
        result = issue_pieces(result, pieces, units)

    _check_invariants(levels, result, units, cartons * units + pieces)
    return result


def _check_invariants(before: StockLevels, after: StockLevels, units: int, issued: int) -> None:
    negative = {name: value for name, value in after.as_dict().items() if value < 0}
    if negative:
        logger.error("Stock deduction produced negative counters %s from %s", negative, before)
        raise StockInvariantError(f"Negative stock counters {negative}")
    if before.total(units) - issued != after.total(units):
        logger.error(
            "Stock deduction broke the unit identity: before=%s after=%s issued=%s units_per_carton=%s",
            before,
            after,
            issued,
            units,
        )
        raise StockInvariantError("Issued quantity does not match the change in available units")
