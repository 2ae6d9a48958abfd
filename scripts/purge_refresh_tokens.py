"""
Delete refresh tokens that expired more than REFRESH_TOKEN_RETENTION_DAYS ago.

Run periodically (cron, k8s CronJob): python scripts/purge_refresh_tokens.py
"""

import logging
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy.exc import SQLAlchemyError

from b2b_starter.config import settings
from b2b_starter.services.auth_service import AuthService


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    service = AuthService.from_settings(settings)
    try:
        deleted = service.purge_expired_tokens()
    except SQLAlchemyError as e:
        print(f"Purge failed: {e}")
        sys.exit(1)
    print(f"Deleted {deleted} refresh token rows.")


if __name__ == "__main__":
    main()
