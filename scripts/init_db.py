"""
Create the database tables and optionally seed a demo venue.

    python scripts/init_db.py
    python scripts/init_db.py --seed-demo
"""

import argparse
import logging
import sys
import pathlib

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1] / "backend"))

from sqlalchemy.engine import make_url  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from courtbook.config import get_settings  # noqa: E402
from courtbook.database import build_engine, build_session_factory  # noqa: E402
from courtbook.models import Base, Courts, PriceRules, Venues  # noqa: E402

logger = logging.getLogger("init_db")

# (start, end, price per hour) applied to every day of the week
DEMO_PRICES = [
    ("06:00", "17:00", 200_000),
    ("17:00", "23:00", 300_000),
]


def ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite") and parsed.database not in (None, "", ":memory:"):
        pathlib.Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


def seed_demo(db: Session, timezone: str) -> None:
    if db.query(Venues).first():
        logger.info("Venues already present, demo seed skipped")
        return

    venue = Venues(
        name="Demo Club",
        timezone=timezone,
        opening_time="06:00",
        closing_time="23:00",
        status="active",
    )
    db.add(venue)
    db.flush()

    for number in (1, 2):
        court = Courts(venue_id=venue.id, name=f"Court {number}", status="active")
        db.add(court)
        db.flush()
        for dow in range(7):
            for start, end, price in DEMO_PRICES:
                db.add(PriceRules(
                    court_id=court.id,
                    day_of_week=dow,
                    start_time=start,
                    end_time=end,
                    price=price,
                    is_active=1,
                ))

    db.commit()
    logger.info("Seeded demo venue id=%s with 2 courts", venue.id)


def main():
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--seed-demo", action="store_true", help="create a demo venue, courts and prices")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    url = settings.resolved_database_url
    ensure_sqlite_dir(url)
    engine = build_engine(settings)
    Base.metadata.create_all(engine)
    logger.info("Tables created on %s", engine.url.render_as_string(hide_password=True))

    if args.seed_demo:
        db = build_session_factory(engine)()
        try:
            seed_demo(db, settings.default_timezone)
        finally:
            db.close()


if __name__ == "__main__":
    main()
