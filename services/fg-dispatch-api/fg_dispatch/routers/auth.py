import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import auth as auth_utils
from .. import models, schemas
from ..deps import get_session
from ..errors import api_error

router = APIRouter()


async def _register_login_attempt(
    session: AsyncSession,
    *,
    username: str,
    success: bool,
    user_id: Optional[int],
    detail: Optional[str] = None,
) -> None:
    session.add(
        models.Audit(
            entity="auth",
            entity_id=username,
            action="login_success" if success else "login_failed",
            payload_json={"username": username, "success": success, "detail": detail},
            user_id=user_id,
            ts=dt.datetime.utcnow(),
        )
    )
    await session.commit()


async def _read_credentials(request: Request) -> schemas.LoginRequest:
    """Accept the OAuth2 form post as well as a JSON body."""

    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            return schemas.LoginRequest.model_validate(await request.json())
        form = await request.form()
        return schemas.LoginRequest(username=form.get("username", ""), password=form.get("password", ""))
    except (ValidationError, ValueError) as exc:
        raise api_error(status.HTTP_400_BAD_REQUEST, "auth.invalid_request", "Username and password are required") from exc


@router.post("/login", response_model=schemas.Token)
async def login(request: Request, session: AsyncSession = Depends(get_session)) -> schemas.Token:
    payload = await _read_credentials(request)
    result = await session.execute(select(models.User).where(models.User.username == payload.username))
    user = result.scalar_one_or_none()
    if user is None or not auth_utils.verify_password(payload.password, user.password_hash):
        await _register_login_attempt(
            session,
            username=payload.username,
            success=False,
            user_id=None,
            detail="Invalid credentials",
        )
        raise api_error(status.HTTP_401_UNAUTHORIZED, "auth.invalid_credentials", "Invalid username or password")
    if not user.active:
        await _register_login_attempt(
            session,
            username=payload.username,
            success=False,
            user_id=user.id,
            detail="Inactive user",
        )
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.inactive_user", "User is inactive")
    token = auth_utils.create_access_token({"sub": str(user.id), "role": user.role})
    await _register_login_attempt(
        session,
        username=payload.username,
        success=True,
        user_id=user.id,
    )
    return schemas.Token(access_token=token)


@router.post("/refresh", response_model=schemas.Token)
async def refresh(user: models.User = Depends(auth_utils.get_current_user)) -> schemas.Token:
    token = auth_utils.create_access_token({"sub": str(user.id), "role": user.role})
    return schemas.Token(access_token=token)


@router.get("/me", response_model=schemas.UserProfile)
async def me(user: models.User = Depends(auth_utils.get_current_user)) -> schemas.UserProfile:
    return schemas.UserProfile(
        id=user.id,
        username=user.username,
        name=user.name,
        role=user.role,
        active=user.active,
        created_at=user.created_at,
    )
