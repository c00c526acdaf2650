"""Authentication endpoints (identity service)."""

from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials

from app.core.exceptions import NotFoundException, UnauthorizedException
from app.dependencies import (
    AdminUser,
    Bus,
    CurrentUser,
    DatabaseSession,
    require_internal,
    security,
)
from app.schemas.auth import (
    AccountRegistration,
    AccountResponse,
    AccountUpdate,
    AuthResponse,
    ClientRegistration,
    InternalAccountList,
    LoginRequest,
    TokenValidationResponse,
)
from app.services.auth_service import AuthService, token_user

router = APIRouter()


@router.post(
    "/register-client",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Public client registration",
)
async def register_client(
    data: ClientRegistration,
    db: DatabaseSession,
    bus: Bus,
) -> AuthResponse:
    """
    Register a new client account and log it in.

    The new user is replicated to the other services through a
    ``USER_CREATED`` event.
    """
    return await AuthService(db, bus).register_client(data)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a user of any role (admin)",
)
async def register(
    data: AccountRegistration,
    db: DatabaseSession,
    bus: Bus,
    _admin: AdminUser,
) -> AuthResponse:
    """Register an account with an explicit role."""
    return await AuthService(db, bus).register(data)


@router.post(
    "/login",
    response_model=AuthResponse,
    status_code=status.HTTP_200_OK,
    summary="Log in with email and password",
)
async def login(data: LoginRequest, db: DatabaseSession, bus: Bus) -> AuthResponse:
    """
    Authenticate with email and password.

    Returns:
        Access token and user information
    """
    return await AuthService(db, bus).login(data.email, data.password)


@router.post(
    "/validate-token",
    response_model=TokenValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate a bearer token",
)
async def validate_token(
    db: DatabaseSession,
    bus: Bus,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenValidationResponse:
    """Used by the other services to authenticate their callers."""
    if credentials is None:
        raise UnauthorizedException("Token not provided")
    account = await AuthService(db, bus).validate_token(credentials.credentials)
    return TokenValidationResponse(user=token_user(account))


@router.get(
    "/me",
    response_model=AccountResponse,
    status_code=status.HTTP_200_OK,
    summary="Current account",
)
async def me(current_user: CurrentUser, db: DatabaseSession, bus: Bus) -> AccountResponse:
    account = await AuthService(db, bus).get_account(current_user["id"])
    if not account:
        raise NotFoundException("User not found")
    return AccountResponse.model_validate(account)


@router.get(
    "/internal/users",
    response_model=InternalAccountList,
    status_code=status.HTTP_200_OK,
    summary="All accounts (internal services only)",
    dependencies=[Depends(require_internal)],
)
async def internal_users(db: DatabaseSession, bus: Bus) -> InternalAccountList:
    """
    List every account without credentials.

    Requires the ``X-Internal-Service`` header.
    """
    accounts = await AuthService(db, bus).list_accounts()
    return InternalAccountList(
        total=len(accounts),
        users=[AccountResponse.model_validate(a) for a in accounts],
    )


@router.put(
    "/users/{account_id}",
    response_model=AccountResponse,
    status_code=status.HTTP_200_OK,
    summary="Update identity fields of an account (admin)",
)
async def update_account(
    account_id: int,
    data: AccountUpdate,
    db: DatabaseSession,
    bus: Bus,
    _admin: AdminUser,
) -> AccountResponse:
    account = await AuthService(db, bus).update_account(account_id, data)
    return AccountResponse.model_validate(account)
