#!/usr/bin/env python3
"""
Seed the default sync schedules.

Creates (or resets by name):
  1. Daily Selective Sync     — 02:00 UTC, users + hierarchy + links
  2. Weekly Full Sync         — Sunday 03:00 UTC, all phases
  3. Hourly Incremental Sync  — 09:00-17:00 UTC, Monday to Friday

Usage:
    python scripts/seed_default_schedules.py
    python scripts/seed_default_schedules.py --disabled   # seed but leave them off

Requires: DATABASE_URL set (or defaults to sqlite:///greenbook.db), schema migrated.
"""
import argparse

from greenbook.logging_config import configure_logging
from greenbook.services.scheduler import seed_default_schedules, toggle_schedule


def main():
    parser = argparse.ArgumentParser(description='Seed the default Greenbook sync schedules')
    parser.add_argument('--disabled', action='store_true', help='Leave the seeded schedules disabled')
    args = parser.parse_args()

    configure_logging()
    schedules = seed_default_schedules()

    for schedule in schedules:
        if args.disabled and schedule['enabled']:
            schedule = toggle_schedule(schedule['id'])
        state = 'enabled' if schedule['enabled'] else 'disabled'
        print(f"  {schedule['name']:<26} {schedule['cron_expression']:<16} {schedule['sync_type']:<12} {state}")

    print(f"\nSeeded {len(schedules)} schedules.")


if __name__ == '__main__':
    main()
