"""Create all tables. Run on app startup."""
import logging

from sqlalchemy.engine import Engine

from settlement.db.base import Base
from settlement.db.session import engine as default_engine
from settlement.models import tenant, client, invoice, ledger, balance, pos_session  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(bind: Engine = None):
    bind = bind or default_engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Schema ready: {len(Base.metadata.tables)} tables")
