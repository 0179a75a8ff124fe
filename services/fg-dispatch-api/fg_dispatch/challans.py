"""Finished-goods delivery challan lifecycle.

A challan is validated, deducted from stock, numbered and written together
with the new stock counters in one transaction. ``ProductStock`` carries an
optimistic version, so two requests racing on the same product cannot both
commit a deduction computed from the same read: the loser rolls back and is
re-run against fresh stock.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from . import ledger, models, schemas
from .notifier import StockNotifier, stock_notifier

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = int(os.getenv("FG_STOCK_MAX_RETRIES", "3"))

DC_PREFIX = "FGDC"

DISPATCH_TYPES = ("Free Sample", "Courier", "E-Commerce", "Sales")
RECEIVER_TYPES = ("Customer", "Dealer", "E-Commerce Platform", "Internal Transfer")
RECEIVER_NAME_REQUIRED = ("Sales", "Courier")

STATUS_PENDING = "Pending"
STATUS_DISPATCHED = "Dispatched"
STATUS_CANCELLED = "Cancelled"

T = TypeVar("T")


class ChallanError(Exception):
    pass


class ChallanValidationError(ChallanError):
    pass


class NotFoundError(ChallanError):
    pass


class ConcurrentUpdateError(ChallanError):
    pass


@dataclass(frozen=True)
class IssueRequest:
    issue_type: str
    quantity: int
    carton_quantity: int
    piece_quantity: int

    def total_pieces(self, units_per_carton: int) -> int:
        return self.carton_quantity * units_per_carton + self.piece_quantity


def validate_create(payload: schemas.ChallanCreateRequest) -> IssueRequest:
    """Check a create request and return its normalised quantities."""

    product_name = (payload.product_name or "").strip()
    if not payload.dispatch_type or not payload.receiver_type or not product_name or not payload.issue_type:
        raise ChallanValidationError("Dispatch type, receiver type, product, and issue type are required.")
    if payload.dispatch_type not in DISPATCH_TYPES:
        raise ChallanValidationError(f"Dispatch type must be one of: {', '.join(DISPATCH_TYPES)}.")
    if payload.receiver_type not in RECEIVER_TYPES:
        raise ChallanValidationError(f"Receiver type must be one of: {', '.join(RECEIVER_TYPES)}.")

    issue_type = payload.issue_type
    if issue_type in (ledger.ISSUE_CARTON, ledger.ISSUE_PIECES):
        if not payload.quantity or payload.quantity <= 0:
            raise ChallanValidationError("Quantity is required and must be greater than 0.")
        cartons = payload.quantity if issue_type == ledger.ISSUE_CARTON else 0
        pieces = payload.quantity if issue_type == ledger.ISSUE_PIECES else 0
        request = IssueRequest(issue_type, payload.quantity, cartons, pieces)
    elif issue_type == ledger.ISSUE_BOTH:
        cartons = payload.carton_quantity or 0
        pieces = payload.piece_quantity or 0
        if cartons < 0 or pieces < 0:
            raise ChallanValidationError("Carton and piece quantities cannot be negative.")
        if cartons == 0 and pieces == 0:
            raise ChallanValidationError("Either carton quantity or piece quantity must be greater than 0.")
        request = IssueRequest(issue_type, 0, cartons, pieces)
    else:
        raise ChallanValidationError(f"Issue type must be one of: {', '.join(ledger.ISSUE_TYPES)}.")

    if payload.dispatch_type in RECEIVER_NAME_REQUIRED and not (payload.receiver_name or "").strip():
        raise ChallanValidationError("Receiver name is required for Sales and Courier dispatch types.")
    return request


def issue_request_for(challan: models.FinishedGoodsDC) -> IssueRequest:
    """Quantities a stored challan asks for, as recorded at creation."""

    if challan.issue_type == ledger.ISSUE_CARTON:
        return IssueRequest(challan.issue_type, challan.quantity, challan.quantity, 0)
    if challan.issue_type == ledger.ISSUE_PIECES:
        return IssueRequest(challan.issue_type, challan.quantity, 0, challan.quantity)
    return IssueRequest(challan.issue_type, challan.quantity, challan.carton_quantity or 0, challan.piece_quantity or 0)


def format_dc_no(year: int, number: int) -> str:
    return f"{DC_PREFIX}-{year}-{number:04d}"


def parse_dc_number(dc_no: str) -> Optional[int]:
    try:
        return int(dc_no.rsplit("-", 1)[-1])
    except (AttributeError, ValueError):
        return None


async def next_dc_no(session: AsyncSession, year: Optional[int] = None) -> str:
    """Number following the most recently created challan of ``year``."""

    year = year or dt.date.today().year
    result = await session.execute(
        select(models.FinishedGoodsDC.dc_no)
        .where(models.FinishedGoodsDC.dc_no.like(f"{DC_PREFIX}-{year}-%"))
        .order_by(models.FinishedGoodsDC.id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    last_number = parse_dc_number(last) if last else None
    return format_dc_no(year, (last_number or 0) + 1)


async def units_per_carton_for(session: AsyncSession, product_name: str) -> int:
    result = await session.execute(
        select(models.ProductMaterialMapping).where(models.ProductMaterialMapping.product_name == product_name)
    )
    mapping = result.scalar_one_or_none()
    if mapping is None:
        raise ledger.ConfigurationError(f"Product mapping not found for {product_name}")
    return ledger.check_units_per_carton(mapping.units_per_carton)


async def load_stock(session: AsyncSession, product_name: str) -> models.ProductStock:
    result = await session.execute(
        select(models.ProductStock).where(models.ProductStock.product_name == product_name)
    )
    stock = result.scalar_one_or_none()
    if stock is None:
        raise NotFoundError(f"Product stock not found for {product_name}")
    return stock


async def get_challan(session: AsyncSession, challan_id: int) -> models.FinishedGoodsDC:
    result = await session.execute(select(models.FinishedGoodsDC).where(models.FinishedGoodsDC.id == challan_id))
    challan = result.scalar_one_or_none()
    if challan is None:
        raise NotFoundError("FG Delivery challan not found")
    return challan


async def list_challans(
    session: AsyncSession,
    *,
    dispatch_type: Optional[str] = None,
    product: Optional[str] = None,
    receiver: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
) -> list[models.FinishedGoodsDC]:
    query = select(models.FinishedGoodsDC)
    if dispatch_type:
        query = query.where(models.FinishedGoodsDC.dispatch_type == dispatch_type)
    if product:
        query = query.where(models.FinishedGoodsDC.product_name.icontains(product, autoescape=True))
    if receiver:
        query = query.where(models.FinishedGoodsDC.receiver_name.icontains(receiver, autoescape=True))
    if start_date:
        query = query.where(models.FinishedGoodsDC.date >= start_date)
    if end_date:
        query = query.where(models.FinishedGoodsDC.date <= end_date)
    query = query.order_by(models.FinishedGoodsDC.created_at.desc(), models.FinishedGoodsDC.id.desc())
    result = await session.execute(query)
    return list(result.scalars().all())


async def _deduct(
    session: AsyncSession, product_name: str, request: IssueRequest
) -> tuple[models.ProductStock, int, ledger.StockLevels, ledger.StockLevels]:
    mapped_units = await units_per_carton_for(session, product_name)
    stock = await load_stock(session, product_name)
    before = ledger.StockLevels.of(stock)
    units = ledger.adopt_units_per_carton(before, stock.units_per_carton, mapped_units)
    after = ledger.issue_stock(
        before,
        units,
        request.issue_type,
        carton_quantity=request.carton_quantity,
        piece_quantity=request.piece_quantity,
    )
    after.apply_to(stock)
    stock.units_per_carton = units
    stock.last_updated = dt.datetime.utcnow()
    return stock, units, before, after


async def _commit_with_retry(session: AsyncSession, stage: Callable[[], Awaitable[T]], what: str) -> T:
    """Run ``stage`` and commit, re-running it when a concurrent write wins."""

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            result = await stage()
            await session.commit()
        except (StaleDataError, IntegrityError) as exc:
            await session.rollback()
            logger.warning("Concurrent write while %s (attempt %s/%s): %s", what, attempt, MAX_ATTEMPTS, exc)
            continue
        except Exception:
            await session.rollback()
            raise
        return result
    raise ConcurrentUpdateError(f"Stock changed concurrently while {what}; please retry.")


def _audit(challan: models.FinishedGoodsDC, action: str, user_id: Optional[int], **payload) -> models.Audit:
    return models.Audit(
        entity="fg_delivery_challan",
        entity_id=challan.dc_no,
        action=action,
        payload_json={"product_name": challan.product_name, "issue_type": challan.issue_type, **payload},
        user_id=user_id,
    )


async def create_challan(
    session: AsyncSession,
    payload: schemas.ChallanCreateRequest,
    *,
    created_by: str,
    user_id: Optional[int] = None,
    notifier: StockNotifier = stock_notifier,
) -> models.FinishedGoodsDC:
    request = validate_create(payload)
    product_name = payload.product_name.strip()

    async def stage() -> tuple[models.FinishedGoodsDC, models.ProductStock]:
        stock, units, before, after = await _deduct(session, product_name, request)
        now = dt.datetime.utcnow()
        challan = models.FinishedGoodsDC(
            dc_no=await next_dc_no(session),
            dispatch_type=payload.dispatch_type,
            receiver_type=payload.receiver_type,
            receiver_name=payload.receiver_name or None,
            receiver_details=payload.receiver_details or None,
            product_name=product_name,
            issue_type=request.issue_type,
            quantity=request.total_pieces(units) if request.issue_type == ledger.ISSUE_BOTH else request.quantity,
            carton_quantity=request.carton_quantity,
            piece_quantity=request.piece_quantity,
            units_per_carton=units,
            available_cartons=before.available_cartons,
            available_pieces=before.available_pieces,
            broken_carton_pieces=before.broken_carton_pieces,
            date=payload.date or dt.date.today(),
            remarks=payload.remarks or None,
            created_by=created_by,
            status=STATUS_DISPATCHED,
            created_at=now,
            updated_at=now,
            completed_date=now,
        )
        session.add(challan)
        session.add(_audit(challan, "dispatched", user_id, before=before.as_dict(), after=after.as_dict()))
        return challan, stock

    challan, stock = await _commit_with_retry(session, stage, f"creating a challan for {product_name}")
    logger.info(
        "Created %s for %s: %s cartons, %s pieces",
        challan.dc_no,
        challan.product_name,
        challan.carton_quantity,
        challan.piece_quantity,
    )
    await notifier.publish_stock(stock)
    return challan


async def update_challan_status(
    session: AsyncSession,
    challan_id: int,
    new_status: Optional[str],
    *,
    user_id: Optional[int] = None,
    notifier: StockNotifier = stock_notifier,
) -> models.FinishedGoodsDC:
    """Move a pending challan to Dispatched (deducting stock) or Cancelled."""

    challan = await get_challan(session, challan_id)
    if challan.status == STATUS_DISPATCHED:
        raise ChallanValidationError("Cannot modify a dispatched FG Delivery Challan.")
    if challan.status == STATUS_CANCELLED:
        raise ChallanValidationError("Cannot modify a cancelled FG Delivery Challan.")
    if not new_status or new_status == challan.status:
        return challan
    if new_status not in (STATUS_DISPATCHED, STATUS_CANCELLED):
        raise ChallanValidationError("Status can only be updated to Dispatched or Cancelled.")

    if new_status == STATUS_CANCELLED:

        async def cancel() -> None:
            current = await get_challan(session, challan_id)
            if current.status != STATUS_PENDING:
                raise ChallanValidationError(f"Cannot modify a {current.status.lower()} FG Delivery Challan.")
            current.status = STATUS_CANCELLED
            current.updated_at = dt.datetime.utcnow()
            session.add(_audit(current, "cancelled", user_id))

        await _commit_with_retry(session, cancel, f"cancelling {challan.dc_no}")
        logger.info("Cancelled %s", challan.dc_no)
        return challan

    async def dispatch() -> models.ProductStock:
        current = await get_challan(session, challan_id)
        if current.status != STATUS_PENDING:
            raise ChallanValidationError(f"Cannot modify a {current.status.lower()} FG Delivery Challan.")
        stock, units, before, after = await _deduct(session, current.product_name, issue_request_for(current))
        now = dt.datetime.utcnow()
        current.status = STATUS_DISPATCHED
        current.units_per_carton = units
        current.updated_at = now
        current.completed_date = now
        session.add(_audit(current, "dispatched", user_id, before=before.as_dict(), after=after.as_dict()))
        return stock

    stock = await _commit_with_retry(session, dispatch, f"dispatching {challan.dc_no}")
    logger.info("Dispatched %s", challan.dc_no)
    await notifier.publish_stock(stock)
    return challan
