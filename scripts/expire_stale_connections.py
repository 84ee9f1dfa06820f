#!/usr/bin/env python3
# scripts/expire_stale_connections.py
"""
Flip pending connections past their expiry to expired.

Reads already treat stale invitations as expired; this sweep makes the stored
status (and the audit trail) catch up. Safe to run as often as you like.

Examples:
  python -m scripts.expire_stale_connections
  python -m scripts.expire_stale_connections --as-of 2025-01-31T00:00:00Z
"""

from __future__ import annotations

import argparse
import logging

from consentlink.core.database import session_scope
from consentlink.services.connection_service import expire_stale_connections
from consentlink.utils.datetime_utils import parse_iso_string, utc_now

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Expire stale pending connections")
    p.add_argument(
        "--as-of",
        type=str,
        default=None,
        help="ISO 8601 instant to evaluate expiry against (default: now, UTC)",
    )
    return p.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    args = parse_args()
    now = parse_iso_string(args.as_of) if args.as_of else utc_now()

    try:
        with session_scope() as db:
            expired = expire_stale_connections(db, now=now)
    except Exception:
        logger.exception("Expiry sweep failed")
        raise

    print(f"{expired} connection(s) expired")


if __name__ == "__main__":
    main()
