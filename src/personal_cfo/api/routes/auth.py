from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response

from personal_cfo.api.dependencies import get_access_token, get_api, get_pollers, get_sessions
from personal_cfo.integration.api_client import APIClient
from personal_cfo.integration.token_store import COOKIE_POLICY
from personal_cfo.logger import get_logger
from personal_cfo.models import OTPResendRequest, OTPVerifyRequest, User, UserCreate, UserLogin
from personal_cfo.services.cache import SessionRegistry, session_key
from personal_cfo.services.poller import PollerRegistry

logger = get_logger(__name__)

router = APIRouter()


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_POLICY.name,
        token,
        max_age=COOKIE_POLICY.max_age,
        secure=COOKIE_POLICY.secure,
        httponly=False,
        samesite=COOKIE_POLICY.samesite,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(
        COOKIE_POLICY.name,
        secure=COOKIE_POLICY.secure,
        samesite=COOKIE_POLICY.samesite,
    )


@router.post("/login")
async def login(
    data: UserLogin,
    response: Response,
    api: Annotated[APIClient, Depends(get_api)],
) -> dict[str, Any]:
    token = await api.login(data)
    set_auth_cookie(response, token.access_token)
    return {"authenticated": True, "token_type": token.token_type, "redirect_to": "/dashboard"}


@router.post("/logout")
async def logout(
    response: Response,
    token: Annotated[str | None, Depends(get_access_token)],
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
    pollers: Annotated[PollerRegistry, Depends(get_pollers)],
) -> dict[str, Any]:
    if token:
        await pollers.discard(session_key(token))
        sessions.discard(token)
        logger.info("[AUTH] Session closed.")
    clear_auth_cookie(response)
    return {"authenticated": False, "redirect_to": "/login"}


@router.post("/signup", response_model=User)
async def signup(
    data: UserCreate,
    api: Annotated[APIClient, Depends(get_api)],
) -> User:
    return await api.register(data)


@router.post("/signup/verify")
async def verify_signup(
    data: OTPVerifyRequest,
    api: Annotated[APIClient, Depends(get_api)],
) -> dict[str, Any]:
    return await api.verify_otp(data)


@router.post("/signup/resend")
async def resend_signup_code(
    data: OTPResendRequest,
    api: Annotated[APIClient, Depends(get_api)],
) -> dict[str, Any]:
    return await api.resend_otp(data)


@router.get("/profile", response_model=User)
async def profile(api: Annotated[APIClient, Depends(get_api)]) -> User:
    return await api.get_user_profile()
