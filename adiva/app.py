from flask import Flask
from flask_cors import CORS
import redis
from prometheus_client import make_wsgi_app
from werkzeug.middleware.dispatcher import DispatcherMiddleware

from adiva.commands import register_commands
from adiva.config import config
from adiva.extensions import db, cache, limiter
from adiva.middleware import request_middleware
from adiva.routes.admin_routes import admin_routes
from adiva.routes.auth_routes import auth_routes
from adiva.routes.chat_routes import chat_routes
from adiva.routes.model_routes import model_routes
from adiva.routes.user_routes import user_routes
from adiva.services.chat_service import ChatService
from adiva.services.conversation_store import InMemoryConversationStore, RedisConversationStore
from adiva.services.providers import build_provider_adapter
from adiva.services.quota_service import GuestQuotaGate
from adiva.utils.errors import register_error_handlers
from adiva.utils.logger import logger

def connect_redis(url):
    """Return a live Redis client, or None when Redis is not reachable."""
    if not url:
        return None
    try:
        client = redis.Redis.from_url(url, socket_connect_timeout=1)
        client.ping()
        return client
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError):
        logger.warning("Redis is not available. Using fallback in-memory storage.")
        return None
    except ValueError as e:
        logger.warning(f"Invalid REDIS_URL ({e}). Using fallback in-memory storage.")
        return None

def build_conversation_store(app, redis_client):
    max_turns = app.config["MAX_HISTORY_LENGTH"]
    if app.config["CONVERSATION_STORE"] == "redis":
        if redis_client is not None:
            return RedisConversationStore(
                redis_client,
                max_turns=max_turns,
                ttl_seconds=app.config["GUEST_HISTORY_TTL_SECONDS"]
            )
        logger.warning("Redis conversation store requested but Redis is down; guest history stays in process memory.")
    return InMemoryConversationStore(
        max_turns=max_turns,
        max_conversations=app.config["GUEST_HISTORY_MAX_CONVERSATIONS"]
    )

def create_app(config_object=None, provider_adapter=None, conversation_store=None):
    """
    Create and configure the Flask application.

    Args:
        config_object: Config class; defaults to the one selected by ADIVA_ENV
        provider_adapter: ProviderAdapter to use instead of the SDK-backed one
        conversation_store: Guest history store to use instead of the configured one
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config_object or config)
    logger.setLevel(app.config["LOG_LEVEL"])

    # Redis-backed storage when available, in-memory otherwise
    redis_client = connect_redis(app.config.get("REDIS_URL"))
    if redis_client is not None:
        app.config["CACHE_REDIS_URL"] = app.config["REDIS_URL"]
        app.config["RATELIMIT_STORAGE_URI"] = app.config["REDIS_URL"]
    else:
        if app.config["CACHE_TYPE"] == "RedisCache":
            app.config["CACHE_TYPE"] = "SimpleCache"
        app.config["RATELIMIT_STORAGE_URI"] = "memory://"

    # Initialize extensions
    CORS(app, supports_credentials=True)
    db.init_app(app)
    cache.init_app(app)
    limiter.init_app(app)

    # Register error handlers
    register_error_handlers(app)

    # Apply middleware
    request_middleware()(app)

    # Wire the chat pipeline
    app.extensions["adiva.chat_service"] = ChatService(
        adapter=provider_adapter or build_provider_adapter(app.config),
        conversation_store=conversation_store or build_conversation_store(app, redis_client),
        quota_gate=GuestQuotaGate(ttl_days=app.config["GUEST_USAGE_TTL_DAYS"]),
        max_history=app.config["MAX_HISTORY_LENGTH"],
    )

    # Register blueprints
    app.register_blueprint(chat_routes, url_prefix="/api")
    app.register_blueprint(model_routes, url_prefix="/api")
    app.register_blueprint(auth_routes, url_prefix="/api/auth")
    app.register_blueprint(user_routes, url_prefix="/api/user")
    app.register_blueprint(admin_routes, url_prefix="/api/admin")

    register_commands(app)

    # Add health check endpoint
    @app.route("/health")
    @limiter.exempt
    def health_check():
        return {
            "status": "healthy",
            "service": "adiva-chat-api",
            "version": app.config["VERSION"],
            "openai_configured": bool(app.config.get("OPENAI_API_KEY")),
            "anthropic_configured": bool(app.config.get("ANTHROPIC_API_KEY")),
        }

    # Prometheus metrics endpoint
    app.wsgi_app = DispatcherMiddleware(app.wsgi_app, {
        '/metrics': make_wsgi_app()
    })

    # Create database tables
    with app.app_context():
        db.create_all()

    return app
