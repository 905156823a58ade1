from flask import Blueprint, g, jsonify, request
from sqlalchemy import select

from adiva.extensions import db
from adiva.middleware import admin_required
from adiva.models import User
from adiva.services.auth_service import AuthService
from adiva.services.settings_service import SettingsService
from adiva.utils.errors import ValidationError

admin_routes = Blueprint("admin_routes", __name__)

def _settings_response(record):
    return jsonify({
        "success": True,
        "settings": record.settings,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None
    })

@admin_routes.route("/settings", methods=["GET"])
@admin_required
def get_settings():
    return _settings_response(SettingsService.get_record())

@admin_routes.route("/settings", methods=["PUT"])
@admin_required
def update_settings():
    """
    Update global settings.

    Accepts a JSON payload with:
    - settings: Partial settings document
    - confirm: {"text": "CONFIRM", "password": <admin password>}

    The password is re-verified before anything is written.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Missing request body")

    AuthService.verify_step_up(g.user, data.get("confirm"))

    record = SettingsService.update_settings(data.get("settings") or {}, g.user)
    return _settings_response(record)

@admin_routes.route("/users", methods=["GET"])
@admin_required
def list_users():
    users = db.session.execute(
        select(User).order_by(User.created_at.desc(), User.id.desc())
    ).scalars().all()
    return jsonify({"success": True, "users": [user.to_dict() for user in users]})
