"""
Run every IP restriction cleanup sweep once.

Meant for cron, e.g. every 10 minutes:
    python maintenance.py --retention-days 90
"""

import argparse
import logging
from datetime import timedelta

from app.config import settings
from app.database import SessionLocal
from app.services.geolocation import GeolocationService
from app.services.ip_restriction import IPRestrictionService

logger = logging.getLogger("maintenance")


def run(retention_days: int) -> dict:
    geo_service = GeolocationService(SessionLocal, cache_ttl=timedelta(hours=settings.GEO_CACHE_TTL_HOURS))
    service = IPRestrictionService(SessionLocal, geo_service)
    service.load_settings()
    try:
        return service.run_maintenance(retention_days)
    finally:
        service.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="IPGate maintenance sweeps")
    parser.add_argument("--retention-days", type=int, default=settings.HISTORY_RETENTION_DAYS,
                        help="Delete access history older than this many days")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    removed = run(args.retention_days)
    for name, count in removed.items():
        logger.info("%s: %d removed", name, count)
