from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy

# Initialize extensions (bound to the app in create_app)
db = SQLAlchemy()
cache = Cache()
limiter = Limiter(key_func=get_remote_address)
