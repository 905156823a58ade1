from datetime import datetime, timezone
from flask import Blueprint, Response, current_app, g, jsonify, request, stream_with_context

from adiva.middleware import resolve_guest_id
from adiva.services.chat_service import ChatPayload
from adiva.services.providers import ImageAttachment
from adiva.services.settings_service import SettingsService
from adiva.utils.errors import ForbiddenError, NotFoundError, ValidationError
from adiva.utils.logger import logger

# Create blueprint
chat_routes = Blueprint("chat_routes", __name__)

def _chat_service():
    return current_app.extensions["adiva.chat_service"]

def _prepare_turn(payload, policy, image=None):
    """Guests go through the quota gate; signed-in users through their chat record."""
    service = _chat_service()
    if g.get("user") is None:
        return service.prepare_guest_turn(resolve_guest_id(), payload, policy, image)
    return service.prepare_user_turn(g.user, payload, policy, image)

@chat_routes.route("/chat", methods=["POST"])
def chat():
    """
    Send a message and get the AI reply.

    Accepts a JSON payload with:
    - message: The user's message
    - conversationId: (Optional) Conversation to continue
    - systemPrompt / userPrompt / modelId / maxTokens: (Optional) overrides
    - answerFormat: (Optional) "json" to unwrap an "answer" field from the reply

    Returns:
    - JSON with reply, conversationId, messageCount, usage, model and timestamp
    - 401 GUEST_LOGIN_REQUIRED with the limit once a guest runs out of chats
    """
    payload = ChatPayload.from_dict(request.get_json(silent=True))
    policy = SettingsService.get_policy()

    turn = _prepare_turn(payload, policy)
    logger.info(f"Chat turn for {turn.conversation_id} using {turn.request.model}")

    return jsonify(_chat_service().complete(turn))

@chat_routes.route("/chat/stream", methods=["POST"])
def chat_stream():
    """
    Same inputs as /chat; the reply arrives as a text/event-stream of
    content frames terminated by a done (or error) frame.
    """
    payload = ChatPayload.from_dict(request.get_json(silent=True))
    policy = SettingsService.get_policy()

    turn = _prepare_turn(payload, policy)
    logger.info(f"Streaming chat turn for {turn.conversation_id} using {turn.request.model}")

    return Response(
        stream_with_context(_chat_service().stream(turn)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

@chat_routes.route("/chat-with-image", methods=["POST"])
def chat_with_image():
    """
    Multipart variant of /chat with an `image` file part.

    Rejected with 403 while the imageUpload feature toggle is off.
    """
    policy = SettingsService.get_policy()
    if not policy.image_upload_enabled:
        raise ForbiddenError("Image uploads are disabled")

    payload = ChatPayload.from_dict(request.form.to_dict())

    image_file = request.files.get("image")
    if image_file is None:
        raise ValidationError("Image file is required")
    mime_type = image_file.mimetype or ""
    if not mime_type.startswith("image/"):
        raise ValidationError("Only image files are allowed")

    image = ImageAttachment(mime_type=mime_type, data=image_file.read())
    turn = _prepare_turn(payload, policy, image)
    logger.info(f"Image chat turn for {turn.conversation_id} ({len(image.data)} bytes)")

    return jsonify(_chat_service().complete(turn))

@chat_routes.route("/chat/history/<conversation_id>", methods=["GET"])
def get_history(conversation_id):
    """Guest conversation history held by the conversation store."""
    store = _chat_service().conversation_store
    if not store.exists(conversation_id):
        raise NotFoundError("Conversation not found")

    messages = store.get(conversation_id)
    return jsonify({
        "conversationId": conversation_id,
        "messages": messages,
        "messageCount": len(messages),
        "timestamp": datetime.now(timezone.utc).isoformat()
    })

@chat_routes.route("/chat/history/<conversation_id>", methods=["DELETE"])
def delete_history(conversation_id):
    if not _chat_service().conversation_store.delete(conversation_id):
        raise NotFoundError("Conversation not found")

    return jsonify({
        "message": "Conversation history deleted successfully",
        "conversationId": conversation_id,
        "timestamp": datetime.now(timezone.utc).isoformat()
    })
