"""Tests for database engine helpers."""

from unittest.mock import patch

from sqlalchemy import inspect
from sqlalchemy.pool import StaticPool

from alertdesk.config.settings import Settings
from alertdesk.ormdb.database import (
    check_database_health,
    create_engine_from_url,
    create_tables,
    drop_tables,
)


class TestCreateEngine:
    """Test create_engine_from_url."""

    def test_in_memory_sqlite_shares_one_connection(self):
        """Test in-memory databases use a static pool."""
        engine = create_engine_from_url("sqlite:///:memory:")

        assert isinstance(engine.pool, StaticPool)
        engine.dispose()

    def test_tables_created_and_dropped(self):
        """Test the schema helpers operate on the given engine."""
        engine = create_engine_from_url("sqlite:///:memory:")

        create_tables(engine)
        assert {"alerts", "notification_log", "in_app_notifications"} <= set(
            inspect(engine).get_table_names()
        )

        drop_tables(engine)
        assert inspect(engine).get_table_names() == []
        engine.dispose()


class TestHealthCheck:
    """Test check_database_health."""

    def test_healthy(self, isolated_db):
        """Test a reachable database reports healthy."""
        settings = Settings(_env_file=None, database_url=isolated_db["db_url"])
        with patch(
            "alertdesk.ormdb.database.get_engine", return_value=isolated_db["engine"]
        ), patch("alertdesk.ormdb.database.get_settings", return_value=settings):
            health = check_database_health()

        assert health["status"] == "healthy"
        assert health["connectivity"] is True

    def test_unhealthy(self):
        """Test connection failures are reported, not raised."""
        with patch(
            "alertdesk.ormdb.database.get_engine", side_effect=RuntimeError("no database")
        ):
            health = check_database_health()

        assert health == {
            "status": "unhealthy",
            "error": "no database",
            "connectivity": False,
        }
