"""Move payment sessions that outlived their expiry to EXPIRED.

Meant for cron; the purchase saga never expires sessions itself.
"""

import argparse
import json

from fitpay.common.config import settings
from fitpay.common.db import make_session_factory
from fitpay.common.logging import configure_logging
from fitpay.services.sessions.service import PaymentSessionService


def main() -> None:
    """CLI entrypoint for the session expiry sweep."""

    parser = argparse.ArgumentParser(description="Expire stale ACTIVE payment sessions.")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--limit", type=int, default=500)
    args = parser.parse_args()

    configure_logging()
    sessions = PaymentSessionService(make_session_factory(args.database_url))
    expired = sessions.expire_stale(limit=args.limit)
    print(json.dumps({"expired": len(expired), "session_ids": expired}, indent=2))


if __name__ == "__main__":
    main()
