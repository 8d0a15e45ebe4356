"""
Expire lapsed reservation holds once and print the report.

Meant for cron or any external scheduler:

    */1 * * * * cd /srv/courtbook && python scripts/sweep_expired.py
"""

import json
import logging
import sys
import pathlib

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1] / "backend"))

from courtbook.config import get_settings  # noqa: E402
from courtbook.database import build_engine, build_session_factory  # noqa: E402
from courtbook.errors import DependencyError  # noqa: E402
from courtbook.redis_client import build_redis_client  # noqa: E402
from courtbook.services.expiry_sweeper import run_sweep  # noqa: E402
from courtbook.services.slots import SlotsRedisStore  # noqa: E402
from courtbook.services.slots.config import booking_config_from_settings  # noqa: E402

logger = logging.getLogger("sweep_expired")


def main() -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine = build_engine(settings)
    store = SlotsRedisStore(build_redis_client(settings), booking_config_from_settings(settings))

    try:
        report = run_sweep(build_session_factory(engine), store)
    except DependencyError as exc:
        logger.error("Sweep aborted: %s", exc.message)
        return 1
    finally:
        engine.dispose()

    print(json.dumps({
        "processed_at": report.processed_at.isoformat(),
        "expired_slot_count": report.expired_slot_count,
        "expired_booking_count": report.expired_booking_count,
        "processed_booking_ids": report.processed_booking_ids,
        "restored_hold_count": report.restored_hold_count,
        "restored_confirmed_count": report.restored_confirmed_count,
        "errors": report.errors,
    }))
    return 0


if __name__ == "__main__":
    sys.exit(main())
