"""Seed the instruments table with the index spot instruments.

Idempotent: uses INSERT ... ON CONFLICT DO NOTHING on the unique
instrument_token column. Option contracts come from the instrument-master
sync, not from here.
Run: python scripts/seed_instruments.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from carry_engine.core.database import dispose_engine
from carry_engine.storage import CarryRepository


INSTRUMENTS = [
    {"instrument_token": "256265", "trading_symbol": "NIFTY 50", "name": "NIFTY 50", "exchange": "NSE", "segment": "INDICES", "instrument_type": "INDEX", "underlying": "NIFTY", "lot_size": 50, "tick_size": 0.05},
    {"instrument_token": "260105", "trading_symbol": "NIFTY BANK", "name": "NIFTY BANK", "exchange": "NSE", "segment": "INDICES", "instrument_type": "INDEX", "underlying": "BANKNIFTY", "lot_size": 25, "tick_size": 0.05},
]


async def main() -> None:
    repository = CarryRepository()
    try:
        count = 0
        for spec in INSTRUMENTS:
            if await repository.register_instrument(spec):
                count += 1
        stats = await repository.get_statistics()
        print(f"Seeded {count} new instruments ({stats['instruments']} total in table).")
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
