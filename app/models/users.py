"""Profile-service user table.

Replica of the identity fields plus the profile attributes this service owns.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    text,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    # Same identifier as the identity service (never generated here)
    Column("id", Integer, primary_key=True, autoincrement=False),
    # Identity-owned fields (replicated)
    Column("email", String(255), nullable=False, unique=True, index=True),
    Column("role", String(20), nullable=False, server_default=text("'client'")),
    Column("active", Boolean, nullable=False, server_default=text("false")),
    Column("name", String(100), nullable=False),
    Column("surname", String(100), nullable=False),
    # Profile-owned fields
    Column("national_id", String(20), unique=True),
    Column("birth_date", Date),
    Column("phone", String(15)),
    Column("address", Text),
    Column("profile_complete", Boolean, nullable=False, server_default=text("false")),
    Column("last_login_at", DateTime),
    # Practitioner-only
    Column("license_number", String(50)),
    Column("specialty", String(100)),
    Column("years_of_experience", Integer),
    # Front-desk-only
    Column("shift", String(20)),
    Column("hire_date", Date),
    # Audit
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "role IN ('admin', 'front_desk', 'client', 'practitioner')",
        name="users_role_check",
    ),
)
