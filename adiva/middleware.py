import time
import uuid
from functools import wraps
from flask import request, g, session, current_app

from adiva.services.auth_service import AuthService
from adiva.utils.errors import ForbiddenError, UnauthorizedError
from adiva.utils.logger import logger, generate_request_id

MAX_GUEST_ID_LENGTH = 64

# Request tracking middleware
def request_middleware():
    """Middleware to track requests, add request ID and load the session user."""
    def decorator(app):
        @app.before_request
        def before_request():
            # Generate and store request ID
            g.request_id = generate_request_id()
            g.start_time = time.time()
            g.user = AuthService.get_user(session.get("user_id"))

            # Log request details
            logger.info(f"Request {request.method} {request.path} from {request.remote_addr}")

        @app.after_request
        def after_request(response):
            # Calculate request duration
            duration = time.time() - g.get('start_time', time.time())
            duration_ms = round(duration * 1000, 2)

            # Add request ID and timing headers
            response.headers['X-Request-ID'] = g.get('request_id', 'unknown')
            response.headers['X-Request-Duration-ms'] = str(duration_ms)

            new_guest_id = g.get('new_guest_id')
            if new_guest_id:
                _set_guest_cookie(response, new_guest_id)

            # Log response details
            logger.info(f"Response {response.status_code} completed in {duration_ms}ms")

            return response

        return app

    return decorator

def _set_guest_cookie(response, guest_id):
    config = current_app.config
    response.set_cookie(
        config["GUEST_COOKIE_NAME"],
        guest_id,
        max_age=config["GUEST_COOKIE_MAX_AGE"],
        httponly=True,
        samesite="Lax",
        secure=config["GUEST_COOKIE_SECURE"],
    )

def resolve_guest_id():
    """
    Return the guest identifier for the current request.

    Reads the guest cookie; when it is missing or malformed a fresh UUID4 is
    issued and the cookie is written on the way out. Never fails: with
    cookies blocked every request simply looks like a new guest.
    """
    cached = g.get('guest_id')
    if cached:
        return cached

    guest_id = request.cookies.get(current_app.config["GUEST_COOKIE_NAME"], "").strip()
    if not guest_id or len(guest_id) > MAX_GUEST_ID_LENGTH:
        guest_id = str(uuid.uuid4())
        g.new_guest_id = guest_id
        logger.info(f"Issued new guest id {guest_id}")

    g.guest_id = guest_id
    return guest_id

# Authentication middleware
def login_required(f):
    """Reject requests without a logged-in user."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated

def admin_required(f):
    """Only logged-in admins pass."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user = g.get('user')
        if user is None:
            raise UnauthorizedError()
        if not user.is_admin:
            logger.warning(f"Non-admin user {user.id} tried to reach {request.path}")
            raise ForbiddenError("Admin access required")
        return f(*args, **kwargs)
    return decorated
