#!/usr/bin/env python3
"""Retry subscription activation for completed payments that never got one."""

import argparse
import logging

from paybridge.core.database import SessionLocal
from paybridge.core.logging import configure_logging
from paybridge.services.subscriptions import SubscriptionService, reconcile_activations


logger = logging.getLogger("reconcile_activations")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=100, help="max transactions to process in one run")
    args = parser.parse_args(argv)

    configure_logging()
    db = SessionLocal()
    try:
        activated = reconcile_activations(db, SubscriptionService(db), limit=args.limit)
    finally:
        db.close()
    logger.info("Activated %s pending subscription(s).", activated)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
