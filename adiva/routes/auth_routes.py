from flask import Blueprint, g, jsonify, request, session

from adiva.middleware import login_required
from adiva.services.auth_service import AuthService
from adiva.utils.errors import ValidationError
from adiva.utils.logger import logger

auth_routes = Blueprint("auth_routes", __name__)

def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise ValidationError("Missing request body")
    return data

@auth_routes.route("/register", methods=["POST"])
def register():
    data = _json_body()
    user = AuthService.register(data.get("name"), data.get("email"), data.get("password"))

    session.clear()
    session["user_id"] = user.id
    return jsonify({"success": True, "user": user.to_dict()}), 201

@auth_routes.route("/login", methods=["POST"])
def login():
    data = _json_body()
    user = AuthService.authenticate(data.get("email"), data.get("password"))

    session.clear()
    session["user_id"] = user.id
    logger.info(f"User {user.id} logged in")
    return jsonify({"success": True, "user": user.to_dict()})

@auth_routes.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"success": True})

@auth_routes.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": g.user.to_dict()})
