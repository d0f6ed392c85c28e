"""
Export saved tip calculations to an Excel workbook.

Usage:
    python scripts/export_history.py --db tips.db --out history.xlsx --limit 50
"""
import argparse
import sys
from pathlib import Path
from typing import List, Sequence, Tuple

import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from storage import SqliteHistory, StoredRecord  # noqa: E402

SUMMARY_COLUMNS = ['id', 'timestamp', 'total_tips', 'sales_tax', 'net_tips', 'remainder']
PAYOUT_COLUMNS = ['record_id', 'timestamp', 'employee', 'hours', 'deserved_tip']


def history_frames(records: Sequence[StoredRecord]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """One summary row per record, one payout row per employee per record."""
    summary = []
    payouts = []
    for record in records:
        # Excel cannot store timezone-aware datetimes
        timestamp = record.timestamp.replace(tzinfo=None)
        summary.append({
            'id': record.id,
            'timestamp': timestamp,
            'total_tips': record.total_tips,
            'sales_tax': record.sales_tax,
            'net_tips': record.net_tips,
            'remainder': record.remainder,
        })
        for name, entry in record.employee_data.items():
            payouts.append({
                'record_id': record.id,
                'timestamp': timestamp,
                'employee': name,
                'hours': entry.hours,
                'deserved_tip': entry.deserved_tip,
            })
    return pd.DataFrame(summary, columns=SUMMARY_COLUMNS), pd.DataFrame(payouts, columns=PAYOUT_COLUMNS)


def export_history(records: Sequence[StoredRecord], out_path: Path) -> None:
    summary, payouts = history_frames(records)
    with pd.ExcelWriter(out_path, engine='openpyxl') as writer:
        summary.to_excel(writer, sheet_name='Summary', index=False)
        payouts.to_excel(writer, sheet_name='Payouts', index=False)


def main(argv: List[str] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('--db', default='tips.db', help='sqlite database written by the API')
    parser.add_argument('--out', default='history.xlsx', help='workbook to write')
    parser.add_argument('--limit', type=int, default=50, help='number of most recent records')
    args = parser.parse_args(argv)

    db_path = Path(args.db)
    if not db_path.exists():
        print(f"ERROR: database not found: {db_path}")
        return 1

    records = SqliteHistory(str(db_path)).list(args.limit)
    export_history(records, Path(args.out))
    print(f"Exported {len(records)} records to {args.out}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
