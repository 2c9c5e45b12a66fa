#!/usr/bin/env python3
"""
LabDash Webhooks - Full Patient Consolidation
Replays every stored webhook payload into the Patient/Report/Doctor tables.

Run with: python -m labdash.scripts.consolidate_patients
"""
import sys
import logging

from ..db import check_connection, init_db, get_db_context
from ..logging_config import configure_logging
from ..services.consolidator import run_full_consolidation

logger = logging.getLogger(__name__)


def print_section(title):
    """Print formatted section header"""
    print(f"\n{'='*60}")
    print(f"  {title}")
    print('='*60)


def print_stats(stats):
    print_section("Consolidation Summary")
    print(f"   Existing patients:      {stats['existing_patients']}")
    print(f"   RequestDump entries:    {stats['request_dumps']}")
    print(f"   Report status entries:  {stats['report_trackers']}")
    print(f"   Sample status entries:  {stats['sample_trackers']}")
    print(f"   Reports:                {stats['reports']}")
    print(f"   ✅ Patients created:    {stats['created']}")
    print(f"   📝 Patients updated:    {stats['updated']}")
    print(f"   ⏭️  Skipped:             {stats['skipped']}")
    print(f"   ⚠️  Errors:              {stats['errors']}")


def main():
    configure_logging(console_level=logging.WARNING)
    print_section("LabDash Patient Consolidation")

    if not check_connection():
        print("❌ Database connection failed")
        return 1

    init_db()

    try:
        with get_db_context() as db:
            stats = run_full_consolidation(db)
    except Exception as e:
        logger.error(f"❌ Consolidation aborted: {e}", exc_info=True)
        return 1

    print_stats(stats)
    return 0 if stats["errors"] == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
