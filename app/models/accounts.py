"""Identity-service account table (credentials and authoritative identity fields)."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    func,
    text,
)

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    # Global user identifier, minted here and reused by every other service
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True, index=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default=text("'client'")),
    Column("active", Boolean, nullable=False, server_default=text("true")),
    Column("name", String(100), nullable=False),
    Column("surname", String(100), nullable=False),
    Column("profile_complete", Boolean, nullable=False, server_default=text("false")),
    Column("last_login_at", DateTime),
    # Audit
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "role IN ('admin', 'front_desk', 'client', 'practitioner')",
        name="accounts_role_check",
    ),
)
