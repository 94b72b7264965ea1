"""Mark elapsed scheduled/confirmed appointments as no-shows.

Usage:
    python -m counseling.mark_no_shows
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from counseling.core import config
from counseling.database import SessionLocal
from counseling.scheduling.no_show import mark_elapsed_no_shows


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    db = SessionLocal()
    try:
        marked = mark_elapsed_no_shows(db)
    except SQLAlchemyError as exc:
        print("No-show sweep failed:", exc, file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()
    print(f"Marked {len(marked)} appointments as no-show.")


if __name__ == "__main__":
    main()
