#!/usr/bin/env python3
"""Small CLI to run one refresh cycle without starting the server.

Usage: python scripts/refresh_once.py [GROUP ...]
Prints the cycle report as JSON and exits non-zero if any group failed.
"""
import json
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from merge_pipeline.connections import ConnectionManager
from merge_pipeline.scheduler import RefreshScheduler
from utils.config import Settings

logging.basicConfig(level=logging.INFO)


def main():
    load_dotenv()
    settings = Settings.from_env()
    wanted = sys.argv[1:]
    if wanted:
        unknown = [g for g in wanted if g not in {spec.name for spec in settings.groups}]
        if unknown:
            print(f"Unknown group(s): {', '.join(unknown)}")
            sys.exit(2)
        settings.groups = [spec for spec in settings.groups if spec.name in wanted]

    manager = ConnectionManager(remove_retired_files=False)
    scheduler = RefreshScheduler(settings, manager)
    try:
        result = scheduler.run_cycle()
    finally:
        manager.close_all()
    print(json.dumps(result.to_dict(), indent=2))
    sys.exit(0 if result.success else 1)

if __name__ == '__main__':
    main()
