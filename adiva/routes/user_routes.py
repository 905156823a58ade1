from flask import Blueprint, g, jsonify, request
from sqlalchemy import func, or_, select

from adiva.extensions import db
from adiva.middleware import login_required
from adiva.models import Chat, ChatMessage
from adiva.services.analytics_service import UserAnalyticsService
from adiva.services.auth_service import AuthService
from adiva.services.model_catalog import get_model_info
from adiva.utils.errors import NotFoundError, ValidationError

user_routes = Blueprint("user_routes", __name__)

MAX_USER_TOKENS = 4000
MAX_CUSTOM_PROMPT_LENGTH = 5000
MAX_TITLE_LENGTH = 100

def _get_own_chat(chat_id):
    chat = db.session.execute(
        select(Chat).filter_by(id=chat_id, user_id=g.user.id)
    ).scalar_one_or_none()
    if chat is None:
        raise NotFoundError("Chat not found")
    return chat

@user_routes.route("/settings", methods=["GET"])
@login_required
def get_settings():
    settings = AuthService.get_user_settings(g.user)
    return jsonify({"success": True, "settings": settings.to_dict()})

@user_routes.route("/settings", methods=["PUT"])
@login_required
def update_settings():
    """
    Update the caller's chat defaults.

    Accepts any of defaultModel, defaultTemperature (0..1),
    defaultMaxTokens (1..4000) and customSystemPrompt.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Missing request body")

    settings = AuthService.get_user_settings(g.user)

    if "defaultModel" in data:
        if data["defaultModel"] is not None and not isinstance(data["defaultModel"], str):
            raise ValidationError("'defaultModel' must be a string")
        if data["defaultModel"] and get_model_info(data["defaultModel"]) is None:
            raise ValidationError(f"Unknown model '{data['defaultModel']}'")
        settings.default_model = data["defaultModel"] or None

    if "defaultTemperature" in data:
        temperature = data["defaultTemperature"]
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or not 0 <= temperature <= 1:
            raise ValidationError("'defaultTemperature' must be between 0 and 1")
        settings.default_temperature = float(temperature)

    if "defaultMaxTokens" in data:
        max_tokens = data["defaultMaxTokens"]
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or not 1 <= max_tokens <= MAX_USER_TOKENS:
            raise ValidationError(f"'defaultMaxTokens' must be between 1 and {MAX_USER_TOKENS}")
        settings.default_max_tokens = max_tokens

    if "customSystemPrompt" in data:
        prompt = data["customSystemPrompt"] or None
        if prompt is not None and (not isinstance(prompt, str) or len(prompt) > MAX_CUSTOM_PROMPT_LENGTH):
            raise ValidationError(f"'customSystemPrompt' must be text up to {MAX_CUSTOM_PROMPT_LENGTH} characters")
        settings.custom_system_prompt = prompt

    db.session.commit()
    return jsonify({"success": True, "settings": settings.to_dict()})

def _paginated_chats(statement, **extra):
    """Apply page/limit/includeArchived query args and render the chat list."""
    try:
        page = max(int(request.args.get("page", 1)), 1)
        limit = min(max(int(request.args.get("limit", 20)), 1), 100)
    except ValueError:
        raise ValidationError("'page' and 'limit' must be integers")
    if request.args.get("includeArchived") != "true":
        statement = statement.filter_by(is_archived=False)

    total = db.session.execute(
        select(func.count()).select_from(statement.subquery())
    ).scalar_one()
    chats = db.session.execute(
        statement.order_by(Chat.last_message_at.desc(), Chat.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return jsonify({
        "success": True,
        "chats": [chat.to_dict() for chat in chats],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit
        },
        **extra
    })

@user_routes.route("/chats", methods=["GET"])
@login_required
def list_chats():
    """Paginated chats of the caller, most recent first."""
    return _paginated_chats(select(Chat).filter_by(user_id=g.user.id))

@user_routes.route("/chats/search", methods=["GET"])
@login_required
def search_chats():
    """Case-insensitive match on chat titles and message text."""
    term = request.args.get("q", "").strip()
    if not term:
        raise ValidationError("Search query is required")

    statement = select(Chat).filter_by(user_id=g.user.id).where(or_(
        Chat.title.icontains(term, autoescape=True),
        Chat.messages.any(ChatMessage.content.icontains(term, autoescape=True)),
    ))
    return _paginated_chats(statement, query=term)

@user_routes.route("/chats/<int:chat_id>", methods=["GET"])
@login_required
def get_chat(chat_id):
    return jsonify({"success": True, "chat": _get_own_chat(chat_id).to_dict(include_messages=True)})

@user_routes.route("/chats/<int:chat_id>", methods=["DELETE"])
@login_required
def delete_chat(chat_id):
    chat = _get_own_chat(chat_id)
    db.session.delete(chat)
    db.session.commit()
    return jsonify({"success": True, "message": "Chat deleted successfully"})

@user_routes.route("/chats/<int:chat_id>", methods=["PUT"])
@login_required
def rename_chat(chat_id):
    data = request.get_json(silent=True)
    title = data.get("title") if isinstance(data, dict) else None
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required")
    if len(title.strip()) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")

    chat = _get_own_chat(chat_id)
    chat.title = title.strip()
    db.session.commit()
    return jsonify({"success": True, "chat": chat.to_dict()})

@user_routes.route("/chats/<int:chat_id>/archive", methods=["POST"])
@login_required
def archive_chat(chat_id):
    """Hide a chat from the default listing; nothing is deleted."""
    chat = _get_own_chat(chat_id)
    chat.is_archived = True
    db.session.commit()
    return jsonify({"success": True, "message": "Chat archived successfully"})

@user_routes.route("/chats/<int:chat_id>/restore", methods=["POST"])
@login_required
def restore_chat(chat_id):
    chat = _get_own_chat(chat_id)
    chat.is_archived = False
    db.session.commit()
    return jsonify({"success": True, "message": "Chat restored successfully"})

@user_routes.route("/analytics", methods=["GET"])
@login_required
def get_analytics():
    """Message, token and model usage of the caller over the last 30 days."""
    summary = UserAnalyticsService.get_summary(g.user.id)
    return jsonify({"success": True, **summary})
