import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from fg_dispatch import ledger  # noqa: E402
from fg_dispatch.ledger import StockLevels  # noqa: E402

MIXED = StockLevels(available_cartons=2, available_pieces=3, broken_carton_pieces=5)


def test_pieces_drain_broken_then_loose_without_breaking_a_carton() -> None:
    result = ledger.issue_stock(MIXED, 10, ledger.ISSUE_PIECES, piece_quantity=6)

    assert result == StockLevels(available_cartons=2, available_pieces=2, broken_carton_pieces=0)


def test_pieces_break_exactly_one_carton_when_loose_stock_runs_out() -> None:
    result = ledger.issue_stock(MIXED, 10, ledger.ISSUE_PIECES, piece_quantity=12)

    # 5 broken + 3 loose, then 4 of the 10 pieces of a newly opened carton
    assert result == StockLevels(available_cartons=1, available_pieces=0, broken_carton_pieces=6)


def test_pieces_can_open_several_cartons() -> None:
    levels = StockLevels(available_cartons=3, available_pieces=0, broken_carton_pieces=0)

    result = ledger.issue_stock(levels, 4, ledger.ISSUE_PIECES, piece_quantity=9)

    assert result == StockLevels(available_cartons=0, available_pieces=0, broken_carton_pieces=3)


def test_cartons_come_only_from_sealed_cartons() -> None:
    result = ledger.issue_stock(MIXED, 10, ledger.ISSUE_CARTON, carton_quantity=2)

    assert result == StockLevels(available_cartons=0, available_pieces=3, broken_carton_pieces=5)


def test_carton_request_above_stock_names_the_deficit() -> None:
    with pytest.raises(ledger.InsufficientCartonStock) as excinfo:
        ledger.issue_stock(MIXED, 10, ledger.ISSUE_CARTON, carton_quantity=5)

    assert excinfo.value.deficit == 3
    assert excinfo.value.available == 2
    assert "Need 3 more cartons" in str(excinfo.value)


def test_both_cannot_break_cartons_issued_whole() -> None:
    # 8 loose pieces remain once both cartons leave sealed
    with pytest.raises(ledger.InsufficientPieceStock) as excinfo:
        ledger.issue_stock(MIXED, 10, ledger.ISSUE_BOTH, carton_quantity=2, piece_quantity=9)

    assert excinfo.value.deficit == 1
    assert excinfo.value.available == 8


def test_both_takes_cartons_first_then_pieces() -> None:
    result = ledger.issue_stock(MIXED, 10, ledger.ISSUE_BOTH, carton_quantity=1, piece_quantity=9)

    assert result == StockLevels(available_cartons=0, available_pieces=0, broken_carton_pieces=9)


def test_failed_deduction_leaves_input_untouched() -> None:
    levels = StockLevels(available_cartons=1, available_pieces=2, broken_carton_pieces=1)

    with pytest.raises(ledger.InsufficientPieceStock):
        ledger.issue_stock(levels, 6, ledger.ISSUE_PIECES, piece_quantity=10)

    assert levels == StockLevels(available_cartons=1, available_pieces=2, broken_carton_pieces=1)


def test_emptied_product_refuses_a_single_piece() -> None:
    levels = StockLevels(available_cartons=5, available_pieces=0, broken_carton_pieces=0)

    emptied = ledger.issue_stock(levels, 20, ledger.ISSUE_CARTON, carton_quantity=5)
    assert emptied.available_cartons == 0

    with pytest.raises(ledger.InsufficientPieceStock) as excinfo:
        ledger.issue_stock(emptied, 20, ledger.ISSUE_PIECES, piece_quantity=1)
    assert excinfo.value.deficit == 1


@pytest.mark.parametrize("units_per_carton", [None, 0, -3])
def test_missing_carton_size_is_a_configuration_error(units_per_carton) -> None:
    with pytest.raises(ledger.ConfigurationError):
        ledger.issue_stock(MIXED, units_per_carton, ledger.ISSUE_PIECES, piece_quantity=1)


@pytest.mark.parametrize(
    "issue_type, cartons, pieces",
    [
        (ledger.ISSUE_CARTON, 1, 0),
        (ledger.ISSUE_PIECES, 0, 1),
        (ledger.ISSUE_PIECES, 0, 7),
        (ledger.ISSUE_PIECES, 0, 28),
        (ledger.ISSUE_BOTH, 1, 13),
        (ledger.ISSUE_BOTH, 2, 8),
    ],
)
def test_available_units_drop_by_exactly_what_was_issued(issue_type, cartons, pieces) -> None:
    result = ledger.issue_stock(MIXED, 10, issue_type, carton_quantity=cartons, piece_quantity=pieces)

    assert MIXED.total(10) - result.total(10) == cartons * 10 + pieces
    assert min(result.as_dict().values()) >= 0


def test_issue_type_selects_which_quantity_applies() -> None:
    result = ledger.issue_stock(MIXED, 10, ledger.ISSUE_CARTON, carton_quantity=1, piece_quantity=50)

    assert result == StockLevels(available_cartons=1, available_pieces=3, broken_carton_pieces=5)


def test_unknown_issue_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        ledger.issue_stock(MIXED, 10, "Pallet", carton_quantity=1)


def test_broken_identity_raises_instead_of_clamping() -> None:
    with pytest.raises(ledger.StockInvariantError):
        ledger._check_invariants(
            StockLevels(available_cartons=1),
            StockLevels(available_cartons=0, available_pieces=-1),
            10,
            11,
        )


def test_carton_size_is_fixed_while_sealed_cartons_are_held() -> None:
    with pytest.raises(ledger.ConfigurationError, match="from 10 to 12 while 2 sealed cartons"):
        ledger.adopt_units_per_carton(MIXED, 10, 12)

    assert ledger.adopt_units_per_carton(MIXED, 10, 10) == 10
    assert ledger.adopt_units_per_carton(StockLevels(available_pieces=3, broken_carton_pieces=5), 10, 12) == 12
    assert ledger.adopt_units_per_carton(MIXED, None, 12) == 12
