from __future__ import annotations

import asyncio

from linkvault.core.logging import configure_logging
from linkvault.persistence.db import SessionLocal
from linkvault.services.maintenance import prune_idempotency_records


async def prune() -> None:
    configure_logging()
    async with SessionLocal() as session:
        deleted = await prune_idempotency_records(session)
        print(f"pruned_idempotency_records={deleted}")


if __name__ == "__main__":
    asyncio.run(prune())
