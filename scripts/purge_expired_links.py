from __future__ import annotations

import asyncio

from linkvault.core.logging import configure_logging
from linkvault.persistence.db import SessionLocal
from linkvault.services.maintenance import purge_expired_links


async def purge() -> None:
    configure_logging()
    async with SessionLocal() as session:
        deleted = await purge_expired_links(session)
        print(f"purged_expired_links={deleted}")


if __name__ == "__main__":
    asyncio.run(purge())
