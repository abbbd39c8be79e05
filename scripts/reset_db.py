import asyncio
import sys
from pathlib import Path


async def recreate_db():
    backend_root = Path(__file__).resolve().parents[1]
    # Ensure backend root on import path
    sys.path.insert(0, str(backend_root))

    from app.config import settings  # type: ignore
    from app.database import create_tables, engine  # type: ignore

    db_path = Path(settings.DATABASE_PATH)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    await engine.dispose()
    if db_path.exists():
        db_path.unlink()
    await create_tables()


if __name__ == '__main__':
    asyncio.run(recreate_db())
    print('Database recreated.')
