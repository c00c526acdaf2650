"""Authentication service (identity service)."""

from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.events import EventBus
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
from app.core.security import (
    create_account_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from app.models.accounts import accounts
from app.schemas.auth import (
    AccountRegistration,
    AccountUpdate,
    AuthResponse,
    ClientRegistration,
    TokenUser,
)
from app.schemas.events import EventType
from app.schemas.users import UserRole

logger = structlog.get_logger()

# Fields replicated to other services on creation
REPLICATED_FIELDS = ("id", "email", "name", "surname", "role", "active", "profile_complete")


def token_user(account: dict[str, Any]) -> TokenUser:
    return TokenUser(
        id=account["id"],
        email=account["email"],
        name=account["name"],
        surname=account["surname"],
        role=account["role"],
        profile_complete=account["profile_complete"],
    )


class AuthService:
    """Registration, login and token validation against the account store."""

    def __init__(self, db: AsyncSession, bus: EventBus):
        """Initialize auth service with database session and event bus."""
        self.db = db
        self.bus = bus

    async def get_account(self, account_id: int) -> dict[str, Any] | None:
        result = await self.db.execute(select(accounts).where(accounts.c.id == account_id))
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_account_by_email(self, email: str) -> dict[str, Any] | None:
        result = await self.db.execute(select(accounts).where(accounts.c.email == email))
        row = result.mappings().first()
        return dict(row) if row else None

    async def _create_account(
        self,
        name: str,
        surname: str,
        email: str,
        password: str,
        role: UserRole,
    ) -> dict[str, Any]:
        if await self.get_account_by_email(email):
            raise ConflictException("Email is already registered")

        now = utcnow()
        stmt = (
            accounts.insert()
            .values(
                email=email,
                password_hash=get_password_hash(password),
                role=role.value,
                active=True,
                name=name,
                surname=surname,
                # Staff and practitioners have nothing left to complete
                profile_complete=role != UserRole.CLIENT,
                created_at=now,
                updated_at=now,
            )
            .returning(accounts)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        account = dict(result.mappings().one())

        await self.bus.publish(
            EventType.USER_CREATED, {field: account[field] for field in REPLICATED_FIELDS}
        )
        logger.info("account_registered", account_id=account["id"], role=account["role"])
        return account

    async def register_client(self, data: ClientRegistration) -> AuthResponse:
        """Public self-registration; always creates a client."""
        account = await self._create_account(
            data.name, data.surname, data.email, data.password, UserRole.CLIENT
        )
        return AuthResponse(access_token=create_account_token(account), user=token_user(account))

    async def register(self, data: AccountRegistration) -> AuthResponse:
        """Registration of any role by an administrator."""
        account = await self._create_account(
            data.name, data.surname, data.email, data.password, data.role
        )
        return AuthResponse(access_token=create_account_token(account), user=token_user(account))

    async def login(self, email: str, password: str) -> AuthResponse:
        """
        Authenticate with email and password.

        Raises:
            UnauthorizedException: Unknown email or wrong password
            ForbiddenException: Account deactivated
        """
        account = await self.get_account_by_email(email)
        if not account:
            raise UnauthorizedException("Invalid email or password")
        if not account["active"]:
            raise ForbiddenException("Account is deactivated. Contact an administrator")
        if not verify_password(password, account["password_hash"]):
            raise UnauthorizedException("Invalid email or password")

        now = utcnow()
        await self.db.execute(
            update(accounts).where(accounts.c.id == account["id"]).values(last_login_at=now)
        )
        await self.db.commit()
        account["last_login_at"] = now

        await self.bus.publish(
            EventType.USER_LOGIN,
            {
                "user_id": account["id"],
                "email": account["email"],
                "role": account["role"],
                "login_at": now.isoformat(),
            },
        )
        logger.info("account_logged_in", account_id=account["id"])
        return AuthResponse(access_token=create_account_token(account), user=token_user(account))

    async def validate_token(self, token: str) -> dict[str, Any]:
        """
        Resolve a bearer token to its active account.

        Raises:
            UnauthorizedException: Invalid token or unknown account
            ForbiddenException: Account deactivated
        """
        payload = decode_access_token(token)
        if payload is None:
            raise UnauthorizedException("Invalid or expired token")

        try:
            account_id = int(payload.get("sub", ""))
        except ValueError:
            raise UnauthorizedException("Invalid token subject")

        account = await self.get_account(account_id)
        if not account:
            raise UnauthorizedException("User not found")
        if not account["active"]:
            raise ForbiddenException("Account is deactivated")
        return account

    async def list_accounts(self) -> list[dict[str, Any]]:
        result = await self.db.execute(select(accounts).order_by(accounts.c.id))
        return [dict(row) for row in result.mappings().all()]

    async def update_account(self, account_id: int, data: AccountUpdate) -> dict[str, Any]:
        """Change identity-owned fields and replicate the change."""
        if not await self.get_account(account_id):
            raise NotFoundException("User not found")

        update_data = {
            field: value.value if isinstance(value, UserRole) else value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if not update_data:
            return await self.get_account(account_id)  # type: ignore[return-value]

        update_data["updated_at"] = utcnow()
        stmt = (
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(**update_data)
            .returning(accounts)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        account = dict(result.mappings().one())

        changes = {k: v for k, v in update_data.items() if k != "updated_at"}
        await self.bus.publish(EventType.USER_UPDATED, {"id": account_id, **changes})
        return account
