import argparse
import asyncio
import logging
import sys
from pathlib import Path


async def run_sweep(interval: float | None) -> int:
    backend_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_root))

    from app.database import create_tables  # type: ignore
    from app.services.reconcile import reconcile  # type: ignore
    from app.store import get_store  # type: ignore

    await create_tables()
    store = get_store()
    while True:
        report = await reconcile(store)
        if interval is None:
            return 1 if report.errors else 0
        await asyncio.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Finish bookkeeping left behind by partially failed purchases and settlements")
    parser.add_argument("--interval", type=float, default=None, help="repeat every N seconds instead of running once")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    return asyncio.run(run_sweep(args.interval))


if __name__ == '__main__':
    sys.exit(main())
