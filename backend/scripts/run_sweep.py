#!/usr/bin/env python3
"""
Run one orchestrator sweep outside HTTP.

Usage:
    python scripts/run_sweep.py              # One movie scene sweep
    python scripts/run_sweep.py --reconcile  # One generation reconciliation sweep
    python scripts/run_sweep.py --loop 120   # Sweep every 120 seconds until interrupted
"""

import argparse
import json
import sys
import time
from pathlib import Path

import structlog

# Add parent directory to Python path so we can import backend modules
script_dir = Path(__file__).parent
backend_dir = script_dir.parent
sys.path.insert(0, str(backend_dir))

from database import init_db
from pipeline.generation_reconciler import create_generation_reconciler
from pipeline.orchestrator import create_project_orchestrator

logger = structlog.get_logger()


def run_once(reconcile: bool) -> dict:
    if reconcile:
        summary = create_generation_reconciler().run()
    else:
        summary = create_project_orchestrator().run_sweep()
    return summary.model_dump()


def main():
    parser = argparse.ArgumentParser(description="Run a movie orchestrator sweep")
    parser.add_argument("--reconcile", action="store_true", help="Run the generation reconciliation sweep instead")
    parser.add_argument("--loop", type=int, metavar="SECONDS", help="Repeat every SECONDS")

    args = parser.parse_args()

    init_db()

    while True:
        result = run_once(args.reconcile)
        print(json.dumps(result, indent=2))
        if not args.loop:
            break
        try:
            time.sleep(args.loop)
        except KeyboardInterrupt:
            logger.info("sweep_loop_stopped")
            break


if __name__ == "__main__":
    main()
