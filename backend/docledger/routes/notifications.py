# Overview: Flask API routes for the caller's notifications.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_tenant
from ..services import notification_service
from ..services.notification_service import NotificationNotFoundError

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_tenant
def list_notifications_route():
    """Notifications addressed to the caller, newest first. Optional ?category=."""
    notifications = notification_service.list_notifications(
        g.org_id, g.current_user.id, category=request.args.get("category")
    )
    return jsonify({
        "items": [n.to_dict() for n in notifications],
        "count": len(notifications),
    }), 200


@notifications_bp.delete("/<int:notification_id>")
@require_tenant
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(g.org_id, g.current_user.id, notification_id)
    except NotificationNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"ok": True}), 200


@notifications_bp.delete("")
@require_tenant
def clear_notifications_route():
    deleted = notification_service.clear_notifications(g.org_id, g.current_user.id)
    return jsonify({"ok": True, "deleted": deleted}), 200
