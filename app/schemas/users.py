"""User schemas for request/response validation (profile service)."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    """User role enumeration."""

    ADMIN = "admin"
    FRONT_DESK = "front_desk"
    CLIENT = "client"
    PRACTITIONER = "practitioner"


STAFF_ROLES = frozenset({UserRole.ADMIN.value, UserRole.FRONT_DESK.value})


class UserBase(BaseModel):
    """Base user schema with common fields."""

    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    surname: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.CLIENT


class UserCreateWithId(UserBase):
    """Materialize a replica with the identifier minted by the identity service."""

    id: int = Field(..., gt=0)
    active: bool = True
    profile_complete: bool = False


class UserUpdate(BaseModel):
    """Schema for updating a user profile.

    The identifier, email and role are owned by the identity service and
    cannot be changed here; a role in the body is rejected.
    """

    name: str | None = Field(None, min_length=1, max_length=100)
    surname: str | None = Field(None, min_length=1, max_length=100)
    role: UserRole | None = None
    national_id: str | None = Field(None, min_length=8, max_length=20)
    birth_date: date | None = None
    phone: str | None = Field(None, min_length=8, max_length=15)
    address: str | None = None
    license_number: str | None = Field(None, max_length=50)
    specialty: str | None = Field(None, max_length=100)
    years_of_experience: int | None = Field(None, ge=0, le=80)
    shift: str | None = Field(None, max_length=20)
    hire_date: date | None = None


class ProfileCompletion(BaseModel):
    """Fields a client provides to complete the profile."""

    national_id: str = Field(..., min_length=8, max_length=20)
    birth_date: date
    phone: str = Field(..., min_length=8, max_length=15)
    address: str = Field(..., min_length=1)


class UserResponse(UserBase):
    """User schema for API responses."""

    id: int
    active: bool
    national_id: str | None = None
    birth_date: date | None = None
    phone: str | None = None
    address: str | None = None
    profile_complete: bool
    last_login_at: datetime | None = None
    license_number: str | None = None
    specialty: str | None = None
    years_of_experience: int | None = None
    shift: str | None = None
    hire_date: date | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    """Schema for paginated user list response."""

    total: int
    page: int
    page_size: int
    items: list[UserResponse]


class SyncSummary(BaseModel):
    """Outcome of a bulk synchronization from the identity service."""

    synchronized: int
    existing: int
    total: int
