from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta
import sys

from linkvault.core.errors import LinkVaultError
from linkvault.core.logging import configure_logging
from linkvault.domain.ownership import owner_from_storage
from linkvault.persistence.db import SessionLocal
from linkvault.services.links.issuer import issue_batch


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue a batch of secure links for an owner")
    parser.add_argument("--owner", required=True, help="Partner id, or starter-user for platform links")
    parser.add_argument("--count", required=True, type=int, help="Number of links to issue")
    parser.add_argument("--expiry-hours", type=float, default=None, help="Expiry window; omit for none")
    parser.add_argument("--batch-no", default="cli", help="Batch label stored on each link")
    return parser


async def _issue(args: argparse.Namespace) -> int:
    expiry = timedelta(hours=args.expiry_hours) if args.expiry_hours else None
    async with SessionLocal() as session:
        links = await issue_batch(
            session,
            owner_from_storage(args.owner),
            args.count,
            expiry=expiry,
            batch_no=args.batch_no,
        )
    for link in links:
        print(link.token)
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_issue(args))
    except LinkVaultError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
