from flask import current_app, g, jsonify
from werkzeug.exceptions import HTTPException

from adiva.utils.logger import logger

# Base API Error class
class APIError(Exception):
    """Base class for API errors with standardized response format."""
    status_code = 500
    error_code = "INTERNAL_ERROR"
    message = "An unexpected error occurred."

    def __init__(self, message=None, error_code=None, status_code=None, details=None, extra=None):
        if message:
            self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.details = details
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self):
        """Flat JSON body: error message, machine-readable code, extra fields."""
        body = {"error": self.message, "code": self.error_code}
        body.update(self.extra)

        # Details only leave the process in development
        if self.details and current_app.config.get("EXPOSE_ERROR_DETAILS"):
            body["details"] = self.details

        return body

    def to_response(self):
        """Convert error to standardized JSON response."""
        return jsonify(self.to_dict()), self.status_code

# Specific API error types
class BadRequestError(APIError):
    """400 Bad Request Error"""
    status_code = 400
    error_code = "BAD_REQUEST"
    message = "The request was invalid or cannot be served."

class ValidationError(BadRequestError):
    """Validation Error (400)"""
    error_code = "VALIDATION_ERROR"
    message = "The request data failed validation."

class UnauthorizedError(APIError):
    """401 Unauthorized Error"""
    status_code = 401
    error_code = "UNAUTHORIZED"
    message = "Authentication is required and has failed or not been provided."

class GuestLimitError(UnauthorizedError):
    """Guest used up the configured number of free chats."""
    error_code = "GUEST_LOGIN_REQUIRED"
    message = "Guest limit reached. Please login to continue."

    def __init__(self, limit):
        super().__init__(extra={"limit": limit})
        self.limit = limit

class ForbiddenError(APIError):
    """403 Forbidden Error"""
    status_code = 403
    error_code = "FORBIDDEN"
    message = "You don't have permission to access this resource."

class NotFoundError(APIError):
    """404 Not Found Error"""
    status_code = 404
    error_code = "NOT_FOUND"
    message = "The requested resource was not found."

class RateLimitError(APIError):
    """429 Too Many Requests Error"""
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"
    message = "Rate limit exceeded. Please wait a moment before trying again."

# LLM-specific errors
class LLMError(APIError):
    """Base class for upstream provider errors."""
    status_code = 500
    error_code = "INTERNAL_ERROR"
    message = "Something went wrong with the AI service."

class LLMQuotaError(LLMError):
    """Upstream account has no credit left."""
    status_code = 429
    error_code = "INSUFFICIENT_QUOTA"
    message = "The AI provider account has run out of credits. Please check billing details."

class LLMAPIKeyError(LLMError):
    """LLM API Key Error"""
    status_code = 401
    error_code = "INVALID_API_KEY"
    message = "Invalid or missing AI provider API key. Please check your configuration."

class LLMRateLimitError(LLMError):
    """LLM Rate Limit Error"""
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"
    message = "Rate limit exceeded. Please wait a moment before trying again."

class LLMContextLengthError(LLMError):
    """Prompt plus history is larger than the model accepts."""
    status_code = 400
    error_code = "CONTEXT_LENGTH_EXCEEDED"
    message = "The conversation is too long for this model. Please start a new chat."

class LLMTimeoutError(LLMError):
    """LLM Timeout Error"""
    status_code = 504
    error_code = "UPSTREAM_TIMEOUT"
    message = "The AI service took too long to respond. Please try again."

# Register error handler with Flask app
def register_error_handlers(app):
    """Register error handlers with Flask app."""

    @app.errorhandler(APIError)
    def handle_api_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.error_code}: {error.message} ({error.details})")
        return error.to_response()

    @app.errorhandler(429)
    def handle_rate_limit(error):
        return RateLimitError(details=str(error.description)).to_response()

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        # Convert default Flask/Werkzeug errors to our format
        api_error = APIError(
            message=error.description,
            error_code=f"HTTP_{error.code}",
            status_code=error.code
        )
        return api_error.to_response()

    @app.errorhandler(Exception)
    def handle_generic_exception(error):
        logger.error(f"Unhandled exception: {str(error)}", exc_info=True)

        api_error = APIError(details=str(error))
        api_error.extra["request_id"] = g.get("request_id", "unknown")
        return api_error.to_response()
