import datetime as dt

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import ledger, models, schemas
from ..auth import get_current_user
from ..deps import get_session
from ..errors import api_error
from ..rbac import require_role

router = APIRouter()


async def _upsert_mappings(
    session: AsyncSession, items: list[schemas.ProductMappingUpsert]
) -> schemas.ProductMappingImportResult:
    """Upsert carton sizes and open a stock record for products that have none.

    Counters of an existing stock record are left untouched; only issuance
    changes them. The carton size cannot change while sealed cartons are held.
    """

    imported = 0
    stock_created = 0
    now = dt.datetime.utcnow()
    for item in items:
        product_name = item.product_name.strip()
        result = await session.execute(
            select(models.ProductMaterialMapping).where(models.ProductMaterialMapping.product_name == product_name)
        )
        mapping = result.scalar_one_or_none()
        if mapping is None:
            mapping = models.ProductMaterialMapping(product_name=product_name, created_at=now)
            session.add(mapping)
        mapping.units_per_carton = item.units_per_carton
        mapping.updated_at = now
        imported += 1

        result = await session.execute(
            select(models.ProductStock).where(models.ProductStock.product_name == product_name)
        )
        stock = result.scalar_one_or_none()
        if stock is None:
            stock = models.ProductStock(
                product_name=product_name,
                available_cartons=item.opening_cartons,
                available_pieces=item.opening_pieces,
                broken_carton_pieces=0,
                created_at=now,
            )
            session.add(stock)
            stock_created += 1
        stock.units_per_carton = ledger.adopt_units_per_carton(
            ledger.StockLevels.of(stock), stock.units_per_carton, item.units_per_carton
        )
        stock.last_updated = now
        if item.item_code is not None:
            stock.item_code = item.item_code
        if item.hsn_code is not None:
            stock.hsn_code = item.hsn_code
        if item.alert_threshold is not None:
            stock.alert_threshold = item.alert_threshold
    await session.commit()
    return schemas.ProductMappingImportResult(imported=imported, stock_created=stock_created)


@router.get("/product-mappings", response_model=list[schemas.ProductMappingEntry])
async def list_mappings(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> list[schemas.ProductMappingEntry]:
    require_role(user, "manager")
    result = await session.execute(
        select(models.ProductMaterialMapping).order_by(models.ProductMaterialMapping.product_name.asc())
    )
    return [schemas.ProductMappingEntry.model_validate(row) for row in result.scalars().all()]


@router.post("/product-mappings", response_model=schemas.ProductMappingImportResult)
async def import_mappings(
    payload: schemas.ProductMappingImportRequest,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.ProductMappingImportResult:
    require_role(user, "admin")
    if not payload.items:
        raise api_error(status.HTTP_400_BAD_REQUEST, "import.empty", "Send at least one product mapping")
    try:
        return await _upsert_mappings(session, payload.items)
    except ledger.ConfigurationError as exc:
        await session.rollback()
        raise api_error(status.HTTP_400_BAD_REQUEST, "import.carton_size_conflict", str(exc)) from exc
    except IntegrityError as exc:
        await session.rollback()
        raise api_error(
            status.HTTP_400_BAD_REQUEST, "import.conflict", "Duplicate product or item code in import"
        ) from exc
