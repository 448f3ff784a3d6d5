"""
Create all tables for the configured DATABASE_URL.
Usage: python scripts/init_db.py
"""
import logging

from app.core.logging import configure_logging
from app.db.base import Base
from app.db.session import engine
from app.models import generation, payment, profile, subscription  # noqa: F401  (register tables)

logger = logging.getLogger("init_db")


def main() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("tables_created", extra={"status": ", ".join(sorted(Base.metadata.tables))})


if __name__ == "__main__":
    main()
