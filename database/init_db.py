import logging

from sqlalchemy import inspect
from tenacity import retry, stop_after_attempt, wait_fixed

from database import database
from database.models import Base

logger = logging.getLogger(__name__)


@retry(stop=stop_after_attempt(5), wait=wait_fixed(2))
def init_db():
    """Create missing tables, retrying while the database comes up."""
    logger.info("Initializing database...")
    try:
        Base.metadata.create_all(bind=database.engine)
        tables = inspect(database.engine).get_table_names()
        logger.info(f"Tables created or verified ({len(tables)} tables).")
    except Exception as e:
        logger.error(f"Error initializing DB: {e}")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
