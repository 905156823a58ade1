from datetime import datetime, timezone
from flask import Blueprint, jsonify

from adiva.services.model_catalog import MODEL_CATALOG, get_model_info
from adiva.services.settings_service import SettingsService
from adiva.utils.errors import ForbiddenError, NotFoundError

model_routes = Blueprint("model_routes", __name__)

@model_routes.route("/ai-models", methods=["GET"])
def list_models():
    """Catalog entries the admin currently allows (all of them when the list is empty)."""
    allowed = set(SettingsService.get_policy().allowed_models)
    models = [
        info.to_dict() for model_id, info in MODEL_CATALOG.items()
        if not allowed or model_id in allowed
    ]
    return jsonify({
        "models": models,
        "totalModels": len(models),
        "timestamp": datetime.now(timezone.utc).isoformat()
    })

@model_routes.route("/ai-models/<model_id>", methods=["GET"])
def get_model(model_id):
    info = get_model_info(model_id)
    if info is None:
        raise NotFoundError("AI model not found")

    allowed = SettingsService.get_policy().allowed_models
    if allowed and model_id not in allowed:
        raise ForbiddenError("AI model not allowed")

    data = info.to_dict()
    data["timestamp"] = datetime.now(timezone.utc).isoformat()
    return jsonify(data)
