"""
One-shot reconciliation sweep (cron or manual).
Usage:
    python scripts/reconcile.py

Runs the due payment releases and retries pending storage cleanups once,
then prints the counts. Exits 1 if anything was left failed or pending.
"""
import logging
import sys
from marketplace.config import get_settings
from marketplace.database import SessionLocal, init_db
from marketplace.main import build_payment_gateway, build_storage
from marketplace.services.reconciliation import run_sweeps


def reconcile() -> int:
    settings = get_settings()
    init_db()

    try:
        counts = run_sweeps(SessionLocal, build_payment_gateway(), build_storage(), settings)
    except Exception as e:
        logging.getLogger(__name__).error(f"Sweep aborted: {e}", exc_info=True)
        print(f"Sweep aborted: {e}")
        return 1

    releases = counts["releases"]
    cleanups = counts["cleanups"]
    print(f"Payment releases: {releases['succeeded']} succeeded, "
          f"{releases['rescheduled']} rescheduled, {releases['failed']} failed")
    print(f"Storage cleanups: {cleanups['deleted']} deleted, {cleanups['still_pending']} still pending")

    if releases["failed"] or cleanups["still_pending"]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(reconcile())
