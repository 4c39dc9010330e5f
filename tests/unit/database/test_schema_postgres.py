#!/usr/bin/env python3
"""
Schema tests against PostgreSQL.

JSONB columns and the partial unique indexes behave differently from
the SQLite used by the rest of the suite, so they are checked here.

These tests require a database - marked with @pytest.mark.db
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from database.models import Base, Notification, NotificationAction, NotificationType, Tenant, new_id


@pytest.fixture(scope="function")
def db_session(test_database):
    """Fresh session inside a transaction that is rolled back after the test."""
    engine = create_engine(test_database)
    Base.metadata.create_all(engine)
    connection = engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection, join_transaction_mode="create_savepoint")()

    yield session

    session.close()
    if transaction.is_active:
        transaction.rollback()
    connection.close()
    engine.dispose()


def _seed(session):
    tenant = Tenant(id=new_id(), name="Acme")
    session.add(tenant)
    notification_type = NotificationType(
        tenant_id=tenant.id,
        name="invoice_overdue",
        default_channels=["email", "slack"],
        template_config={"email": "invoice_overdue"},
    )
    session.add(notification_type)
    session.flush()
    return tenant, notification_type


def _notification(tenant, notification_type, **fields):
    return Notification(
        tenant_id=tenant.id,
        user_id="user-1",
        notification_type_id=notification_type.id,
        channel="email",
        **fields
    )


@pytest.mark.db
class TestNotificationSchema:

    def test_json_columns_round_trip(self, db_session):
        tenant, notification_type = _seed(db_session)
        notification = _notification(tenant, notification_type, payload={"invoice_id": "inv-1", "amount": 12.5})
        db_session.add(notification)
        db_session.commit()
        db_session.expire_all()

        stored = db_session.get(Notification, notification.id)
        assert stored.payload == {"invoice_id": "inv-1", "amount": 12.5}
        assert stored.delivery_attempts == []
        assert db_session.get(NotificationType, notification_type.id).default_channels == ["email", "slack"]

    def test_timestamps_are_utc_aware(self, db_session):
        tenant, notification_type = _seed(db_session)
        when = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        notification = _notification(tenant, notification_type, scheduled_for=when)
        db_session.add(notification)
        db_session.commit()
        db_session.expire_all()

        stored = db_session.get(Notification, notification.id)
        assert stored.scheduled_for == when
        assert stored.scheduled_for.tzinfo is not None

    def test_type_name_unique_per_tenant(self, db_session):
        tenant, _ = _seed(db_session)
        db_session.add(NotificationType(tenant_id=tenant.id, name="invoice_overdue"))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_event_key_unique_only_when_set(self, db_session):
        tenant, notification_type = _seed(db_session)
        db_session.add(_notification(tenant, notification_type))
        db_session.add(_notification(tenant, notification_type))
        db_session.add(_notification(tenant, notification_type, event_key="inv-1"))
        db_session.flush()

        db_session.add(_notification(tenant, notification_type, event_key="inv-1"))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_one_completed_action_per_type(self, db_session):
        tenant, notification_type = _seed(db_session)
        notification = _notification(tenant, notification_type)
        db_session.add(notification)
        db_session.flush()

        def action(status):
            return NotificationAction(
                tenant_id=tenant.id,
                notification_id=notification.id,
                user_id="user-1",
                action_type="approve",
                status=status,
            )

        db_session.add_all([action("failed"), action("failed"), action("completed")])
        db_session.flush()

        db_session.add(action("completed"))
        with pytest.raises(IntegrityError):
            db_session.flush()
