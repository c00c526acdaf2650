"""Database models.

Each service owns a separate database; ``SERVICE_METADATA`` maps a service to
the tables it creates.
"""

from sqlalchemy import MetaData

from app.config import ServiceName
from app.models.accounts import accounts
from app.models.accounts import metadata as accounts_metadata
from app.models.appointments import appointments
from app.models.appointments import metadata as appointments_metadata
from app.models.outbox import event_outbox
from app.models.outbox import metadata as outbox_metadata
from app.models.users import metadata as users_metadata
from app.models.users import users

SERVICE_METADATA: dict[ServiceName, list[MetaData]] = {
    ServiceName.IDENTITY: [accounts_metadata],
    ServiceName.PROFILE: [users_metadata],
    ServiceName.SCHEDULING: [appointments_metadata, outbox_metadata],
}

__all__ = [
    "SERVICE_METADATA",
    "accounts",
    "appointments",
    "event_outbox",
    "users",
]
