"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                   -- password login; tokens + SSO cookies
  POST /api/v1/auth/register                -- self-registration; tokens + SSO cookies
  POST /api/v1/auth/refresh                 -- rotate refresh token; new pair + SSO cookies
  POST /api/v1/auth/logout                  -- revoke one or all sessions; clears cookies
  POST /api/v1/auth/change-password         -- requires Bearer; revokes all sessions
  POST /api/v1/auth/verify                  -- access-token introspection for sibling services
  GET  /api/v1/auth/profile                 -- current user (requires Bearer)
  PUT  /api/v1/auth/profile                 -- update names (requires Bearer)
  PUT  /api/v1/auth/avatar                  -- store an already-uploaded avatar URL (requires Bearer)
  POST /api/v1/auth/password-reset          -- request a reset token; uniform answer
  POST /api/v1/auth/password-reset/confirm  -- set a new password with a reset token

Handlers are plain `def`, not `async def`: bcrypt is CPU-bound and FastAPI
runs sync handlers in its threadpool, which keeps hashing off the event loop.
Handlers never catch AuthError (except /verify, which has its own failure
body); api/main.py renders them into the {success: false, error} envelope.

Security:
  [H2] login and password-reset are rate-limited per client IP. @limiter.limit
       must sit below @router.post: the router has to register the limiter's
       wrapper, because SlowAPIMiddleware never evaluates callable limits.
  [C1] wrong password and unknown email share one response (gateway).
  [M5] Cache-Control: no-store on every auth response (middleware in api/main.py).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    AuthData,
    AvatarUpdate,
    ChangePasswordRequest,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    ProfileData,
    ProfileResponse,
    ProfileUpdate,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    TokenData,
    UserView,
    VerifyData,
    VerifyResponse,
)
from auth.cookies import clear_sso_cookies, set_sso_cookies
from auth.dependencies import bearer_token, get_gateway
from auth.errors import AuthError
from auth.gateway import AuthGateway
from auth.models import AuthResult
from core.config import get_settings

# Auth policy:
# - login, register, refresh, password-reset, password-reset/confirm: public
# - logout, change-password, verify, profile, avatar: Bearer access token
router = APIRouter()

_RESET_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _write_cookies(response: Response, result: AuthResult) -> None:
    settings = get_settings()
    set_sso_cookies(
        response,
        result.access_token,
        result.user,
        result.expires_in,
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)  # [H2] brute-force mitigation
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    gateway: AuthGateway = Depends(get_gateway),
) -> LoginResponse:
    """Authenticate with email and password.

    Returns the same generic error for wrong email and wrong password
    ("invalid_credentials") to avoid leaking account existence.
    """
    result = gateway.login(body.email, body.password)
    _write_cookies(response, result)
    return LoginResponse(
        token=result.access_token,
        refresh_token=result.refresh_token,
        user=UserView.from_user(result.user),
        expires_in=result.expires_in,
    )


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    gateway: AuthGateway = Depends(get_gateway),
) -> RegisterResponse:
    """Create an account and sign it in. Password violations come back in `details`."""
    result = gateway.register(body.email, body.password, body.first_name, body.last_name, role=body.role)
    _write_cookies(response, result)
    return RegisterResponse(
        data=AuthData(
            user=UserView.from_user(result.user),
            token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
        )
    )


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(
    body: RefreshRequest,
    response: Response,
    gateway: AuthGateway = Depends(get_gateway),
) -> RefreshResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    result = gateway.refresh(body.refresh_token)
    _write_cookies(response, result)
    return RefreshResponse(
        data=TokenData(token=result.access_token, refresh_token=result.refresh_token, expires_in=result.expires_in)
    )


@router.post("/auth/password-reset", response_model=MessageResponse)
@limiter.limit(login_limit)  # [H2] reset requests are an enumeration and spam vector
def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    gateway: AuthGateway = Depends(get_gateway),
) -> MessageResponse:
    """Always answers with the same message whether or not the account exists."""
    gateway.request_password_reset(body.email)
    return MessageResponse(message=_RESET_MESSAGE)


@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
def confirm_password_reset(
    body: PasswordResetConfirm,
    gateway: AuthGateway = Depends(get_gateway),
) -> MessageResponse:
    gateway.confirm_password_reset(body.token, body.new_password)
    return MessageResponse(message="Password has been reset. Please sign in again.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    response: Response,
    body: LogoutRequest | None = None,
    token: str = Depends(bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
) -> MessageResponse:
    """Revoke the given refresh token, or every session of the caller if none is given."""
    gateway.logout(token, body.refresh_token if body else None)
    clear_sso_cookies(response, domain=get_settings().cookie_domain)
    return MessageResponse(message="Logged out successfully")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    token: str = Depends(bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
) -> MessageResponse:
    """Change the caller's password. Every session is revoked, this one included."""
    gateway.change_password(token, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post("/auth/verify", response_model=VerifyResponse)
def verify(request: Request, gateway: AuthGateway = Depends(get_gateway)):
    """Capability check for sibling services. Failure body carries data.valid=false."""
    try:
        claims = gateway.verify_token(bearer_token(request))
    except AuthError as exc:
        body = ErrorResponse(error=exc.message, code=exc.code).model_dump(by_alias=True, exclude_none=True)
        body["data"] = {"valid": False}
        return JSONResponse(status_code=exc.status_code, content=body)
    return VerifyResponse(data=VerifyData.from_claims(claims))


@router.get("/auth/profile", response_model=ProfileResponse)
def get_profile(
    token: str = Depends(bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
) -> ProfileResponse:
    user = gateway.get_profile(token)
    return ProfileResponse(data=ProfileData(user=UserView.from_user(user)))


@router.put("/auth/profile", response_model=ProfileResponse)
def update_profile(
    body: ProfileUpdate,
    token: str = Depends(bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
) -> ProfileResponse:
    user = gateway.update_profile(token, body.first_name, body.last_name)
    return ProfileResponse(data=ProfileData(user=UserView.from_user(user)), message="Profile updated successfully")


@router.put("/auth/avatar", response_model=ProfileResponse)
def update_avatar(
    body: AvatarUpdate,
    token: str = Depends(bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
) -> ProfileResponse:
    """Record an avatar URL. The upload itself is done by the file storage service."""
    user = gateway.update_avatar(token, body.avatar_url)
    return ProfileResponse(data=ProfileData(user=UserView.from_user(user)), message="Avatar updated successfully")
