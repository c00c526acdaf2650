"""Authentication schemas (identity service)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, model_validator

from app.schemas.users import UserRole


class ClientRegistration(BaseModel):
    """Public self-registration of a client."""

    name: str = Field(..., min_length=1, max_length=100)
    surname: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self) -> "ClientRegistration":
        """Validate that both passwords are identical."""
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class AccountRegistration(BaseModel):
    """Registration of any role, performed by an administrator."""

    name: str = Field(..., min_length=1, max_length=100)
    surname: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)
    role: UserRole = UserRole.CLIENT


class LoginRequest(BaseModel):
    """Credentials for login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class AccountUpdate(BaseModel):
    """Identity-owned fields an administrator can change."""

    name: str | None = Field(None, min_length=1, max_length=100)
    surname: str | None = Field(None, min_length=1, max_length=100)
    role: UserRole | None = None
    active: bool | None = None


class AccountResponse(BaseModel):
    """Account as exposed by the identity service (never the hash)."""

    id: int
    email: EmailStr
    name: str
    surname: str
    role: UserRole
    active: bool
    profile_complete: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TokenUser(BaseModel):
    """Identity carried by a validated bearer token."""

    id: int
    email: EmailStr
    name: str
    surname: str
    role: UserRole
    profile_complete: bool


class AuthResponse(BaseModel):
    """Registration / login response with token and account info."""

    access_token: str
    token_type: str = "bearer"
    user: TokenUser


class TokenValidationResponse(BaseModel):
    """Result of a token validation call."""

    valid: bool = True
    user: TokenUser


class InternalAccountList(BaseModel):
    """Bulk listing for other services."""

    total: int
    users: list[AccountResponse]
