# Overview: Pytest coverage for low-stock notifications and recipient-side operations.

import pytest

from docledger.extensions import db
from docledger.models import Notification
from docledger.services import notification_service
from docledger.services.notification_service import NotificationNotFoundError


class TestNotifyLowStock:
    def test_creates_one_row_per_recipient(self, db_session, org_a, admin_a, key_user_a, field_user_a, make_product):
        p = make_product(org_a, "Pump seal", stock_level=1, minimum=3)
        assert notification_service.notify_low_stock(org_a.id, p.id) == 2

        payloads = [n.payload for n in db.session.query(Notification).all()]
        assert all(pl["product_name"] == "Pump seal" for pl in payloads)
        assert all(pl["minimum_stock_level"] == 3 for pl in payloads)

    def test_only_recipients_of_the_products_tenant(self, db_session, org_a, org_b, admin_a, admin_b, make_product):
        p = make_product(org_a, stock_level=0, minimum=1)
        notification_service.notify_low_stock(org_a.id, p.id)
        assert [n.recipient_user_id for n in db.session.query(Notification).all()] == [admin_a.id]

    def test_unknown_product_is_logged_not_raised(self, db_session, org_a, admin_a):
        assert notification_service.notify_low_stock(org_a.id, 424242) == 0

    def test_roles_from_config(self, app, db_session, org_a, admin_a, field_user_a, make_product):
        old = app.config["LOW_STOCK_NOTIFY_ROLES"]
        app.config["LOW_STOCK_NOTIFY_ROLES"] = ["field_service_employee"]
        try:
            p = make_product(org_a, stock_level=0, minimum=1)
            notification_service.notify_low_stock(org_a.id, p.id)
        finally:
            app.config["LOW_STOCK_NOTIFY_ROLES"] = old
        assert [n.recipient_user_id for n in db.session.query(Notification).all()] == [field_user_a.id]

    def test_database_error_is_swallowed(self, db_session, org_a, admin_a, make_product, monkeypatch):
        p = make_product(org_a, stock_level=0, minimum=1)

        def broken(*args, **kwargs):
            raise RuntimeError("insert failed")

        monkeypatch.setattr(notification_service, "create_notification", broken)
        assert notification_service.notify_low_stock(org_a.id, p.id) == 0
        assert db.session.query(Notification).count() == 0


class TestRecipientOperations:
    def _seed(self, org, user, count=2):
        for i in range(count):
            notification_service.create_notification(user.id, org.id, "low_stock", {"product_id": i})
        db.session.commit()

    def test_list_own_only(self, db_session, org_a, admin_a, key_user_a):
        self._seed(org_a, admin_a, 2)
        self._seed(org_a, key_user_a, 1)
        assert len(notification_service.list_notifications(org_a.id, admin_a.id)) == 2
        assert len(notification_service.list_notifications(org_a.id, key_user_a.id, category="low_stock")) == 1
        assert notification_service.list_notifications(org_a.id, key_user_a.id, category="other") == []

    def test_only_recipient_can_delete(self, db_session, org_a, admin_a, key_user_a):
        self._seed(org_a, admin_a, 1)
        notification = db.session.query(Notification).one()

        with pytest.raises(NotificationNotFoundError):
            notification_service.delete_notification(org_a.id, key_user_a.id, notification.id)

        notification_service.delete_notification(org_a.id, admin_a.id, notification.id)
        assert db.session.query(Notification).count() == 0

    def test_clear(self, db_session, org_a, admin_a, key_user_a):
        self._seed(org_a, admin_a, 3)
        self._seed(org_a, key_user_a, 1)
        assert notification_service.clear_notifications(org_a.id, admin_a.id) == 3
        assert db.session.query(Notification).count() == 1
