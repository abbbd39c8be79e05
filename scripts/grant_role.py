import argparse
import asyncio
import sys
from pathlib import Path


async def grant(user_id: str, role: str):
    backend_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_root))

    from app.database import create_tables  # type: ignore
    from app.store import get_store  # type: ignore

    await create_tables()
    await get_store().grant_role(user_id, role)


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant a marketplace role (e.g. affiliate) to a user id")
    parser.add_argument("user_id")
    parser.add_argument("--role", default="affiliate", choices=["user", "affiliate", "admin"])
    args = parser.parse_args()
    asyncio.run(grant(args.user_id, args.role))
    print(f"Granted {args.role} to {args.user_id}.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
