"""Create all carry store tables that do not exist yet.

Run: python scripts/init_db.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from carry_engine.core.database import create_all_tables, dispose_engine
from carry_engine.core.models import Base


async def main() -> None:
    try:
        await create_all_tables()
        print(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
