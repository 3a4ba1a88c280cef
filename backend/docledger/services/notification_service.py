# Overview: Low-stock notifier and recipient-side notification operations.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Notification, Product, User
from ..models.notifications import CATEGORY_LOW_STOCK
from ..models.tenancy import ROLE_SUPER_ADMIN


class NotificationNotFoundError(Exception):
    pass


def alert_recipient_roles() -> set[str]:
    """Roles that receive operational alerts, from config."""
    roles = set(current_app.config.get("LOW_STOCK_NOTIFY_ROLES") or ())
    if current_app.config.get("LOW_STOCK_NOTIFY_SUPER_ADMINS"):
        roles.add(ROLE_SUPER_ADMIN)
    else:
        roles.discard(ROLE_SUPER_ADMIN)
    return roles


def resolve_alert_recipients(org_id: int) -> list[User]:
    roles = alert_recipient_roles()
    if not roles:
        return []
    return (
        db.session.query(User)
        .filter(
            User.org_id == org_id,
            User.is_active == True,  # noqa: E712
            User.role.in_(roles),
        )
        .order_by(User.id.asc())
        .all()
    )


def create_notification(recipient_user_id: int, org_id: int, category: str, payload: dict) -> Notification:
    """Add one notification row to the session. Does not commit."""
    notification = Notification(
        org_id=org_id,
        recipient_user_id=recipient_user_id,
        category=category,
        payload=payload,
    )
    db.session.add(notification)
    return notification


def notify_low_stock(org_id: int, product_id: int) -> int:
    """
    Create one low_stock notification per eligible recipient.

    Never raises: a failure is logged and rolled back so it cannot affect
    the stock change that triggered it. Returns the number of rows created.
    """
    try:
        product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
        if product is None:
            current_app.logger.warning("Low-stock alert for unknown product %s (org %s)", product_id, org_id)
            return 0

        payload = {
            "product_id": product.id,
            "product_name": product.name,
            "stock_level": product.stock_level,
            "minimum_stock_level": product.minimum_stock_level,
        }
        recipients = resolve_alert_recipients(org_id)
        for user in recipients:
            create_notification(user.id, org_id, CATEGORY_LOW_STOCK, payload)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create low-stock notifications for product %s", product_id)
        return 0

    current_app.logger.info(
        "Low stock on product %s (%s): notified %s user(s)", product.id, product.name, len(recipients)
    )
    return len(recipients)


def list_notifications(org_id: int, user_id: int, category: str | None = None) -> list[Notification]:
    q = db.session.query(Notification).filter(
        Notification.org_id == org_id,
        Notification.recipient_user_id == user_id,
    )
    if category:
        q = q.filter(Notification.category == category)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def delete_notification(org_id: int, user_id: int, notification_id: int) -> None:
    """Dismiss one notification. Only its recipient can delete it."""
    notification = (
        db.session.query(Notification)
        .filter_by(id=notification_id, org_id=org_id, recipient_user_id=user_id)
        .first()
    )
    if notification is None:
        raise NotificationNotFoundError("Notification not found")
    db.session.delete(notification)
    db.session.commit()


def clear_notifications(org_id: int, user_id: int) -> int:
    deleted = (
        db.session.query(Notification)
        .filter(Notification.org_id == org_id, Notification.recipient_user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
