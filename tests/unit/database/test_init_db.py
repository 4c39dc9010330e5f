import unittest
from unittest.mock import patch

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from tenacity import stop_after_attempt, wait_none

from database import database
from database.database import build_engine
from database.init_db import init_db
from database.models import Base


class TestInitDb(unittest.TestCase):

    def setUp(self):
        self.engine = build_engine("sqlite://")
        patcher = patch.object(database, "engine", self.engine)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self.engine.dispose)

    def test_creates_tables(self):
        init_db()

        tables = set(inspect(self.engine).get_table_names())
        self.assertIn("notifications", tables)
        self.assertIn("notification_batches", tables)
        self.assertIn("used_action_tokens", tables)

    def test_retries_until_database_is_up(self):
        refused = OperationalError("CREATE TABLE", {}, Exception("connection refused"))
        with patch.object(Base.metadata, "create_all", side_effect=[refused, None]) as mock_create:
            init_db.retry_with(wait=wait_none())()

        self.assertEqual(mock_create.call_count, 2)

    def test_gives_up_after_attempts(self):
        refused = OperationalError("CREATE TABLE", {}, Exception("connection refused"))
        with patch.object(Base.metadata, "create_all", side_effect=refused):
            with self.assertRaises(Exception):
                init_db.retry_with(wait=wait_none(), stop=stop_after_attempt(2))()


if __name__ == '__main__':
    unittest.main()
