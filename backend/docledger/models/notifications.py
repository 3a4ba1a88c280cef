from __future__ import annotations

from ..extensions import db
from docledger.time_utils import to_utc_z


CATEGORY_LOW_STOCK = "low_stock"


class Notification(db.Model):
    """
    In-app alert for one recipient.

    Rows are written once and never updated; only the recipient may delete
    (dismiss) them.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_org_recipient", "org_id", "recipient_user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    category = db.Column(db.String(32), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "recipient_user_id": self.recipient_user_id,
            "category": self.category,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }
