import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base application settings
class BaseConfig:
    """Base configuration class."""
    # Application settings
    APP_NAME = "Adiva Chat API"
    VERSION = "2.0.0"
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///adiva.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis settings for caching, rate limiting and shared guest history
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Cache settings
    CACHE_TYPE = "RedisCache"
    CACHE_DEFAULT_TIMEOUT = 300  # 5 minutes
    SETTINGS_CACHE_TIMEOUT = 60

    # Rate limiting (Flask-Limiter)
    RATELIMIT_ENABLED = True
    RATELIMIT_DEFAULT = "60 per minute"
    RATELIMIT_HEADERS_ENABLED = True

    # Log settings
    LOG_LEVEL = logging.INFO
    LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - %(message)s'
    LOG_FILE = "adiva_api.log"

    # Upstream providers
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", 60))

    # Conversation window
    MAX_HISTORY_LENGTH = 10
    CONVERSATION_STORE = os.getenv("CONVERSATION_STORE", "memory")  # memory | redis
    GUEST_HISTORY_MAX_CONVERSATIONS = 1000
    GUEST_HISTORY_TTL_SECONDS = 7 * 24 * 3600

    # Guest identity
    GUEST_COOKIE_NAME = "guest_id"
    GUEST_COOKIE_MAX_AGE = 30 * 24 * 3600  # 30 days
    GUEST_COOKIE_SECURE = False
    GUEST_USAGE_TTL_DAYS = 30

    # Uploads
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10MB

    # Error responses carry exception details only in development
    EXPOSE_ERROR_DETAILS = False

class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    LOG_LEVEL = logging.DEBUG
    RATELIMIT_ENABLED = False
    EXPOSE_ERROR_DETAILS = True

class ProductionConfig(BaseConfig):
    """Production configuration."""
    LOG_LEVEL = logging.WARNING
    SECRET_KEY = os.getenv("SECRET_KEY")

    # Production database settings
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True
    }

    REDIS_URL = os.getenv("REDIS_URL")
    RATELIMIT_DEFAULT = "200 per minute"

    GUEST_COOKIE_SECURE = True
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = "Lax"

class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    LOG_LEVEL = logging.DEBUG
    LOG_FILE = None
    SECRET_KEY = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    REDIS_URL = None
    CACHE_TYPE = "SimpleCache"
    RATELIMIT_ENABLED = False
    CONVERSATION_STORE = "memory"
    OPENAI_API_KEY = "test-openai-key"
    ANTHROPIC_API_KEY = "test-anthropic-key"

# Select config based on environment
def get_config():
    """Return the appropriate configuration based on environment."""
    env = os.getenv("ADIVA_ENV", "development").lower()
    configs = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig
    }
    return configs.get(env, DevelopmentConfig)

# Export the active configuration
config = get_config()
