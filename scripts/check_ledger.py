#!/usr/bin/env python3
"""Ledger 무결성 점검 스크립트

시산표 균형과 불균형 전기 분개를 확인.
문제가 있으면 종료 코드 1.
"""

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.config.loader import load_config
from core.ledger.store import LedgerStore


async def main(config_path: Path | None, as_of: date | None) -> int:
    config = load_config(config_path)
    
    async with SQLiteAdapter(config.db_path, readonly=True) as db:
        store = LedgerStore(db)
        trial_balance = await store.get_trial_balance(as_of)
        unbalanced = await store.find_unbalanced_posted_entries()
        
        print(f"DB Path: {config.db_path}")
        print(f"As of: {as_of or 'all'}")
        print(f"\nTrial balance ({len(trial_balance.rows)} accounts):")
        for row in trial_balance.rows:
            print(
                f"  {row.code:<6} {row.name:<30} "
                f"DR {row.debit_total:>14}  CR {row.credit_total:>14}  ({row.type.value})"
            )
        print(f"  {'Total':<37} DR {trial_balance.total_debit:>14}  CR {trial_balance.total_credit:>14}")
        
        ok = trial_balance.is_balanced() and not unbalanced
        print(f"\nBalanced: {trial_balance.is_balanced()}")
        if unbalanced:
            print(f"Unbalanced posted entries: {unbalanced}")
        print("OK ✓" if ok else "FAILED ✗")
        return 0 if ok else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ledger 무결성 점검")
    parser.add_argument("--config", type=Path, default=None, help="ledger.yaml 경로")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="기준일 (YYYY-MM-DD)")
    args = parser.parse_args()
    
    sys.exit(asyncio.run(main(args.config, args.as_of)))
