"""
CosmoCard Backend — Auth Routes
=================================

What:  Email one-time code registration/login and token verification.

Flow:
    1. POST .../send-code (or /login/email) → code emailed, echoed outside production
    2. POST .../verify                      → {token, user}
    3. Card endpoints take the token as `Authorization: Bearer <token>`
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cosmocard.database import get_db_session
from cosmocard.dependencies import get_auth_service
from cosmocard.schemas.auth import (
    AuthResponse,
    LoginRequest,
    SendCodeRequest,
    SendCodeResponse,
    UserOut,
    VerifyCodeRequest,
    VerifyTokenRequest,
    VerifyTokenResponse,
)
from cosmocard.schemas.common import ErrorResponse
from cosmocard.services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _code_message(result: dict) -> str:
    if result.get("sent"):
        return "Код отправлен на email"
    return "Код создан"


@router.post(
    "/register/email/send-code",
    response_model=SendCodeResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
    summary="Send a registration code",
)
async def send_registration_code(
    body: SendCodeRequest,
    auth: AuthService = Depends(get_auth_service),
) -> SendCodeResponse:
    result = await auth.send_registration_code(body.email, body.name)
    return SendCodeResponse(message=_code_message(result), code=result.get("code"))


@router.post(
    "/login/email",
    response_model=SendCodeResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
    summary="Send a login code to a registered email",
)
async def send_login_code(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> SendCodeResponse:
    result = await auth.send_login_code(db, body.email)
    return SendCodeResponse(message=_code_message(result), code=result.get("code"))


async def _verify(body: VerifyCodeRequest, db: AsyncSession, auth: AuthService) -> AuthResponse:
    token, user = await auth.verify_code(db, body.email, body.code)
    return AuthResponse(token=token, user=UserOut.from_user(user))


@router.post(
    "/register/email/verify",
    response_model=AuthResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Verify a registration code and issue a token",
)
async def verify_registration_code(
    body: VerifyCodeRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    return await _verify(body, db, auth)


@router.post(
    "/login/email/verify",
    response_model=AuthResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Verify a login code and issue a token",
)
async def verify_login_code(
    body: VerifyCodeRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    return await _verify(body, db, auth)


@router.post(
    "/verify-token",
    response_model=VerifyTokenResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Check a token and return its user",
)
async def verify_token(
    body: VerifyTokenRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> VerifyTokenResponse:
    claims = auth.verify_token(body.token)
    user = await auth.users.get(db, claims.user_id)
    if user is None:
        return VerifyTokenResponse(
            user=UserOut(user_id=claims.user_id, email=claims.email or None, name=claims.name)
        )
    return VerifyTokenResponse(user=UserOut.from_user(user))
