"""Authentication endpoints.

Password registration and sign-in, email verification, magic links,
password reset, logout, the current-user profile, and OAuth sign-in.

Endpoints that start a session answer with the user and set the session
cookie. Endpoints that send email always report success so the response
does not reveal whether an address is registered.
"""

from typing import Annotated

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from gatekeep.api.deps import CurrentUser, IdentityServiceDep
from gatekeep.api.oauth_redirect import (
    frontend_redirect,
    login_callback_url,
    run_callback,
)
from gatekeep.core.auth import apply_cookie, build_session_cookie, clear_session_cookie
from gatekeep.core.config import settings
from gatekeep.core.responses import DataResponse
from gatekeep.schemas.identity import MessageResponse, UserResponse

router = APIRouter()

NewPassword = Annotated[str, Field(min_length=8, max_length=128)]


# ===================================================================
# Request models
# ===================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: NewPassword
    name: str | None = Field(None, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class EmailRequest(BaseModel):
    """Request body for POST /auth/magic-link and POST /auth/password-reset."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class TokenRequest(BaseModel):
    """Request body for POST /auth/verify-email."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)


class PasswordResetConfirmRequest(BaseModel):
    """Request body for POST /auth/password-reset/confirm."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)
    new_password: NewPassword


class UpdateProfileRequest(BaseModel):
    """Request body for PATCH /auth/me."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(max_length=255)


# ===================================================================
# Password and email-token flows
# ===================================================================


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    service: IdentityServiceDep,
) -> DataResponse[UserResponse]:
    """Create an unverified account and email a verification link."""
    user = await service.register(body.email, body.password, body.name)
    return DataResponse(data=UserResponse.from_user(user))


@router.post("/login")
async def login(
    body: LoginRequest,
    response: Response,
    service: IdentityServiceDep,
) -> DataResponse[UserResponse]:
    """Sign in with email and password and set the session cookie."""
    session = await service.login(body.email, body.password)
    user = await service.get_user(session.user_id)
    apply_cookie(response, build_session_cookie(session.token))
    return DataResponse(data=UserResponse.from_user(user))


@router.post("/magic-link")
async def request_magic_link(
    body: EmailRequest,
    service: IdentityServiceDep,
) -> DataResponse[MessageResponse]:
    await service.request_magic_link(body.email)
    return DataResponse(
        data=MessageResponse(message="If an account exists, a sign-in link has been sent")
    )


@router.get("/magic-link/callback")
async def magic_link_callback(
    token: Annotated[str, Query(min_length=1, max_length=256)],
    service: IdentityServiceDep,
) -> RedirectResponse:
    """Redeem a magic link, set the session cookie, and go to the frontend."""
    session = await service.magic_link_callback(token)
    response = frontend_redirect("/", [build_session_cookie(session.token)])
    # Keep the token out of the Referer header
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


@router.post("/verify-email")
async def verify_email(
    body: TokenRequest,
    response: Response,
    service: IdentityServiceDep,
) -> DataResponse[UserResponse]:
    """Confirm the email address and sign the user in."""
    session = await service.verify_email(body.token)
    user = await service.get_user(session.user_id)
    apply_cookie(response, build_session_cookie(session.token))
    return DataResponse(data=UserResponse.from_user(user))


@router.post("/password-reset")
async def request_password_reset(
    body: EmailRequest,
    service: IdentityServiceDep,
) -> DataResponse[MessageResponse]:
    await service.request_password_reset(body.email)
    return DataResponse(
        data=MessageResponse(message="If an account exists, a reset link has been sent")
    )


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    body: PasswordResetConfirmRequest,
    service: IdentityServiceDep,
) -> DataResponse[MessageResponse]:
    await service.confirm_password_reset(body.token, body.new_password)
    return DataResponse(data=MessageResponse(message="Password updated"))


# ===================================================================
# Session and profile
# ===================================================================


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    service: IdentityServiceDep,
) -> DataResponse[MessageResponse]:
    """Delete the session (if any) and clear the cookie. No auth required."""
    await service.logout(request.cookies.get(settings.session_cookie_name))
    apply_cookie(response, clear_session_cookie())
    return DataResponse(data=MessageResponse(message="Signed out"))


@router.get("/me")
async def get_me(user: CurrentUser) -> DataResponse[UserResponse]:
    return DataResponse(data=UserResponse.from_user(user))


@router.patch("/me")
async def update_me(
    body: UpdateProfileRequest,
    user: CurrentUser,
    service: IdentityServiceDep,
) -> DataResponse[UserResponse]:
    """Update the display name; blank names are stored as no name."""
    name = body.name.strip() if body.name else None
    updated = await service.update_profile(user.id, name or None)
    return DataResponse(data=UserResponse.from_user(updated))


# ===================================================================
# OAuth sign-in
# ===================================================================


@router.get("/login/{provider}")
async def oauth_login_initiate(
    provider: str,
    service: IdentityServiceDep,
) -> RedirectResponse:
    """Redirect to the provider with a fresh signed state."""
    url, state_cookie = service.begin_oauth(provider, login_callback_url(provider))
    response = RedirectResponse(url=url, status_code=302)
    apply_cookie(response, state_cookie)
    return response


@router.get("/login/{provider}/callback")
async def oauth_login_callback(
    provider: str,
    request: Request,
    service: IdentityServiceDep,
    code: str | None = None,
    state: str | None = None,
) -> RedirectResponse:
    """Complete OAuth sign-in for an already-linked identity."""
    session, error = await run_callback(
        service.oauth_login(
            provider,
            code=code,
            state=state,
            cookies=request.cookies,
            redirect_uri=login_callback_url(provider),
        ),
        provider=provider,
        fallback_error="login_failed",
    )
    clear_state = service.clear_state_cookie()
    if session is None:
        return frontend_redirect("/login", [clear_state], error=error or "login_failed")
    return frontend_redirect("/", [clear_state, build_session_cookie(session.token)])
