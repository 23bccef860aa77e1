"""
One-off expiry sweep: delete unconfirmed signups past their window, purge deactivated accounts
past their grace period and release parkings whose device confirmation never came.
Usage: python scripts/run_expiry_sweep.py
Suitable for cron when the in-process sweep is disabled (EXPIRY_SWEEP_ENABLED=false).
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.services.cleanup import run_expiry_sweep


def main():
    counts = run_expiry_sweep()
    for name, count in counts.items():
        print(f"{name}: {count}")


if __name__ == "__main__":
    main()
