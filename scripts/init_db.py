"""Script to create the tables of one service's database."""

import argparse
import asyncio

from app.config import ServiceName, settings
from app.database import engine
from app.models import SERVICE_METADATA


async def init_db(service: ServiceName) -> None:
    """Initialize the database by creating the tables the service owns."""
    async with engine.begin() as conn:
        for metadata in SERVICE_METADATA[service]:
            await conn.run_sync(metadata.create_all)

    print(f"✓ Database for the {service.value} service initialized successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the tables of a service database")
    parser.add_argument(
        "--service",
        choices=[s.value for s in ServiceName],
        default=settings.service_name.value,
        help="Service whose tables to create (default: SERVICE_NAME)",
    )
    args = parser.parse_args()
    asyncio.run(init_db(ServiceName(args.service)))
