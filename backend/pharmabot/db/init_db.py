"""Create the mirror tables. Run on app startup."""
import logging

from sqlalchemy.engine import Engine

from pharmabot.db.base import Base
from pharmabot.models import conversation_state  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(engine: Engine):
    Base.metadata.create_all(bind=engine)
    logger.info(f"[DB] Session mirror ready at {engine.url.render_as_string(hide_password=True)}")
