"""Routers for finished-goods delivery challans."""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import challans, ledger, models, schemas
from ..auth import get_current_user
from ..deps import get_session
from ..errors import api_error, stock_error
from ..rbac import require_role

router = APIRouter()


def _challan_error(exc: challans.ChallanError):
    if isinstance(exc, challans.NotFoundError):
        return api_error(status.HTTP_404_NOT_FOUND, "challan.not_found", str(exc))
    if isinstance(exc, challans.ConcurrentUpdateError):
        return api_error(status.HTTP_409_CONFLICT, "stock.concurrent_update", str(exc))
    return api_error(status.HTTP_400_BAD_REQUEST, "challan.invalid", str(exc))


def _build_summary(challan: models.FinishedGoodsDC) -> schemas.ChallanSummary:
    return schemas.ChallanSummary(
        dc_no=challan.dc_no,
        status=challan.status,
        issue_type=challan.issue_type,
        carton_quantity=challan.carton_quantity,
        piece_quantity=challan.piece_quantity,
        total_quantity=challan.quantity,
    )


@router.post("", response_model=schemas.ChallanCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_challan(
    payload: schemas.ChallanCreateRequest,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.ChallanCreateResponse:
    require_role(user, "manager")
    try:
        challan = await challans.create_challan(
            session,
            payload,
            created_by=user.name or user.username,
            user_id=user.id,
        )
    except ledger.StockError as exc:
        raise stock_error(exc) from exc
    except challans.ChallanError as exc:
        raise _challan_error(exc) from exc
    return schemas.ChallanCreateResponse(
        message="Finished Goods Delivery Challan created successfully.",
        data=_build_summary(challan),
    )


@router.get("", response_model=list[schemas.ChallanResponse])
async def list_challans(
    dispatch_type: Optional[str] = Query(None, alias="dispatchType"),
    product: Optional[str] = Query(None),
    receiver: Optional[str] = Query(None),
    start_date: Optional[dt.date] = Query(None, alias="startDate"),
    end_date: Optional[dt.date] = Query(None, alias="endDate"),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> list[schemas.ChallanResponse]:
    require_role(user, "manager")
    rows = await challans.list_challans(
        session,
        dispatch_type=dispatch_type,
        product=product,
        receiver=receiver,
        start_date=start_date,
        end_date=end_date,
    )
    return [schemas.ChallanResponse.model_validate(row) for row in rows]


@router.get("/{challan_id}", response_model=schemas.ChallanResponse)
async def get_challan(
    challan_id: int,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.ChallanResponse:
    require_role(user, "manager")
    try:
        challan = await challans.get_challan(session, challan_id)
    except challans.ChallanError as exc:
        raise _challan_error(exc) from exc
    return schemas.ChallanResponse.model_validate(challan)


@router.put("/{challan_id}", response_model=schemas.ChallanResponse)
async def update_challan(
    challan_id: int,
    payload: schemas.ChallanStatusUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.ChallanResponse:
    require_role(user, "admin")
    try:
        challan = await challans.update_challan_status(session, challan_id, payload.status, user_id=user.id)
    except ledger.StockError as exc:
        raise stock_error(exc) from exc
    except challans.ChallanError as exc:
        raise _challan_error(exc) from exc
    return schemas.ChallanResponse.model_validate(challan)
