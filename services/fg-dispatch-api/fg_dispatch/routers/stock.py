from fastapi import APIRouter, Depends, status
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .. import challans, ledger, models, schemas
from ..auth import get_current_user
from ..deps import get_session
from ..errors import api_error
from ..rbac import require_role

router = APIRouter()

FG = models.FinishedGoodsDC

# pieces issued by one dispatched challan
OUTWARD_PIECES = case(
    (FG.issue_type == ledger.ISSUE_CARTON, FG.quantity * FG.units_per_carton),
    (FG.issue_type == ledger.ISSUE_BOTH, FG.carton_quantity * FG.units_per_carton + FG.piece_quantity),
    else_=FG.quantity,
)


async def _all_stock(session: AsyncSession) -> list[models.ProductStock]:
    result = await session.execute(select(models.ProductStock).order_by(models.ProductStock.product_name.asc()))
    return list(result.scalars().all())


@router.get("/stock", response_model=list[schemas.StockEntry])
async def list_stock(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> list[schemas.StockEntry]:
    require_role(user, "manager")
    return [schemas.StockEntry.model_validate(row) for row in await _all_stock(session)]


@router.get("/stock-alerts", response_model=list[schemas.StockAlert])
async def stock_alerts(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> list[schemas.StockAlert]:
    require_role(user, "manager")
    return [
        schemas.StockAlert(
            id=row.id,
            product_name=row.product_name,
            item_code=row.item_code,
            current_stock=row.total_available,
            alert_threshold=row.alert_threshold,
        )
        for row in await _all_stock(session)
        if row.total_available < row.alert_threshold
    ]


@router.get("/stock-report", response_model=list[schemas.StockReportRow])
async def stock_report(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> list[schemas.StockReportRow]:
    require_role(user, "manager")
    result = await session.execute(
        select(FG.product_name, func.coalesce(func.sum(OUTWARD_PIECES), 0))
        .where(FG.status == challans.STATUS_DISPATCHED)
        .group_by(FG.product_name)
    )
    outward = {product_name: int(total) for product_name, total in result.all()}
    return [
        schemas.StockReportRow(
            id=row.id,
            product_name=row.product_name,
            item_code=row.item_code,
            hsn_code=row.hsn_code,
            total_outward=outward.get(row.product_name, 0),
            available_stock=row.total_available,
            available_cartons=row.available_cartons,
            available_pieces=row.available_pieces,
            broken_carton_pieces=row.broken_carton_pieces,
            units_per_carton=row.units_per_carton,
            alert_threshold=row.alert_threshold,
            last_updated=row.last_updated,
        )
        for row in await _all_stock(session)
    ]


@router.get("/stock/{product_name}", response_model=schemas.StockEntry)
async def get_stock(
    product_name: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.StockEntry:
    require_role(user, "manager")
    result = await session.execute(
        select(models.ProductStock).where(func.lower(models.ProductStock.product_name) == product_name.lower())
    )
    stock = result.scalars().first()
    if stock is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "stock.not_found", "Product stock not found")
    return schemas.StockEntry.model_validate(stock)


@router.put("/stock/{stock_id}", response_model=schemas.StockEntry)
async def update_stock_settings(
    stock_id: int,
    payload: schemas.StockSettingsUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.StockEntry:
    require_role(user, "admin")
    if payload.alert_threshold is None and payload.hsn_code is None:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "stock.empty_update",
            "At least one field (alert_threshold or hsn_code) is required",
        )
    result = await session.execute(select(models.ProductStock).where(models.ProductStock.id == stock_id))
    stock = result.scalar_one_or_none()
    if stock is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "stock.not_found", "Product stock not found")
    if payload.alert_threshold is not None:
        stock.alert_threshold = payload.alert_threshold
    if payload.hsn_code is not None:
        stock.hsn_code = payload.hsn_code
    try:
        await session.commit()
    except StaleDataError as exc:
        await session.rollback()
        raise api_error(
            status.HTTP_409_CONFLICT, "stock.concurrent_update", "Stock changed concurrently; please retry."
        ) from exc
    return schemas.StockEntry.model_validate(stock)
