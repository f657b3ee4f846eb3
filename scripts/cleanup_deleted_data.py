#!/usr/bin/env python3
"""Hard-delete vegetables and work reports that were soft-deleted long ago.

Photos of purged vegetables are removed from object storage as well.

Usage:
    python scripts/cleanup_deleted_data.py             # purge rows deleted > 180 days ago
    python scripts/cleanup_deleted_data.py --days 365
    python scripts/cleanup_deleted_data.py --dry-run   # count only
"""

import argparse
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fms.config import load_config
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import purge_deleted_vegetables
from app.fms.modules.work_reports.models import WorkReport
from app.fms.modules.work_reports.service import purge_deleted_reports
from app.fms.storage import storage_from_config
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge soft-deleted farm records")
    parser.add_argument("--days", type=int, default=180, help="Only purge rows deleted more than N days ago")
    parser.add_argument("--dry-run", action="store_true", help="Report counts without deleting")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///fms.db").strip()

    with script_session(db_url) as s:
        if args.dry_run:
            cutoff = datetime.utcnow() - timedelta(days=args.days)
            n_veg = s.query(Vegetable).filter(Vegetable.deleted_at.isnot(None), Vegetable.deleted_at < cutoff).count()
            n_rep = s.query(WorkReport).filter(WorkReport.deleted_at.isnot(None), WorkReport.deleted_at < cutoff).count()
            print(f"[dry-run] would purge {n_veg} vegetables and {n_rep} work reports (cutoff={cutoff.date()})")
            return

        storage = storage_from_config(load_config())
        n_rep = purge_deleted_reports(s, older_than_days=args.days)
        n_veg = purge_deleted_vegetables(s, storage=storage, older_than_days=args.days)

    print(f"Purged {n_veg} vegetables and {n_rep} work reports.")


if __name__ == "__main__":
    main()
