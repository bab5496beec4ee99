"""
Security utilities for the Book Bazaar API
"""
import os
import re
import secrets
from datetime import timedelta
from werkzeug.security import generate_password_hash, check_password_hash
from dotenv import load_dotenv

from error_handling import ForbiddenError, NotFoundError

# Load environment variables
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() == 'true'


class SecurityConfig:
    """Security configuration and utilities"""

    # Password requirements
    MIN_PASSWORD_LENGTH = int(os.getenv('MIN_PASSWORD_LENGTH', '8'))
    REQUIRE_SPECIAL_CHARS = _env_bool('REQUIRE_SPECIAL_CHARS', 'False')
    REQUIRE_NUMBERS = _env_bool('REQUIRE_NUMBERS', 'True')
    REQUIRE_UPPERCASE = _env_bool('REQUIRE_UPPERCASE', 'True')

    # Token configuration
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRES = timedelta(days=int(os.getenv('JWT_EXPIRES_DAYS', '7')))
    PASSWORD_RESET_TTL = timedelta(minutes=int(os.getenv('PASSWORD_RESET_TTL_MINUTES', '60')))

    _generated_secret = None

    @staticmethod
    def generate_secret_key():
        """Generate a secure secret key"""
        return secrets.token_urlsafe(32)

    @classmethod
    def get_secret_key(cls):
        """Get secret key from environment, or a per-process random one"""
        secret_key = os.getenv('SECRET_KEY')
        if secret_key:
            return secret_key
        if cls._generated_secret is None:
            cls._generated_secret = cls.generate_secret_key()
            print("WARNING: SECRET_KEY is not set; tokens will not survive a restart")
        return cls._generated_secret

    @classmethod
    def get_jwt_secret(cls):
        return os.getenv('JWT_SECRET') or cls.get_secret_key()

    @staticmethod
    def generate_reset_token():
        return secrets.token_hex(32)

    @staticmethod
    def validate_password(password):
        """
        Validate password strength
        Returns: (is_valid, error_message)
        """
        if not password:
            return False, "Password is required"

        if len(password) < SecurityConfig.MIN_PASSWORD_LENGTH:
            return False, f"Password must be at least {SecurityConfig.MIN_PASSWORD_LENGTH} characters long"

        if SecurityConfig.REQUIRE_UPPERCASE and not re.search(r'[A-Z]', password):
            return False, "Password must contain at least one uppercase letter"

        if SecurityConfig.REQUIRE_NUMBERS and not re.search(r'\d', password):
            return False, "Password must contain at least one number"

        if SecurityConfig.REQUIRE_SPECIAL_CHARS and not re.search(r'[!@#$%^&*(),.?":{}|<>]', password):
            return False, "Password must contain at least one special character"

        return True, None

    @staticmethod
    def hash_password(password):
        """Hash a password securely"""
        return generate_password_hash(password, method='pbkdf2:sha256', salt_length=16)

    @staticmethod
    def verify_password(password_hash, password):
        """Verify a password against its hash"""
        return check_password_hash(password_hash, password)

    @staticmethod
    def validate_username(username):
        """Validate username format"""
        if not username:
            return False, "Username is required"

        if len(username) < 3:
            return False, "Username must be at least 3 characters long"

        if len(username) > 30:
            return False, "Username must be at most 30 characters long"

        if not re.match(r'^[a-zA-Z0-9_-]+$', username):
            return False, "Username can only contain letters, numbers, underscores, and hyphens"

        return True, None

    @staticmethod
    def validate_email(email):
        """Validate email format"""
        if not email:
            return False, "Email is required"

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            return False, "Invalid email format"

        return True, None

    @staticmethod
    def setup_security_headers(app):
        """Add the standard security headers to every response"""
        @app.after_request
        def add_security_headers(response):
            response.headers['X-Content-Type-Options'] = 'nosniff'
            response.headers['X-Frame-Options'] = 'DENY'
            response.headers['Referrer-Policy'] = 'no-referrer'
            return response


class AuthorizationPolicy:
    """Decides whether an ownership failure reads as 404 or 403.

    Masked resources answer "not found" to callers who do not own them, so
    their existence is not revealed. The rest answer 403.
    """

    MASKED_RESOURCES = {
        "book": "Book",
        "listing": "Listing",
        "negotiation": "Negotiation",
        "forum": "Forum",
        "forum_reply": "Reply",
        "message": "Message",
    }
    UNMASKED_RESOURCES = {
        "exchange_request": "Not authorized to respond to this request",
        "book_club": "Only club admins or moderators can do this",
    }

    @classmethod
    def mask_not_found(cls, resource_type):
        if resource_type in cls.MASKED_RESOURCES:
            return True
        if resource_type in cls.UNMASKED_RESOURCES:
            return False
        raise KeyError(f"Unknown resource type: {resource_type}")

    @classmethod
    def deny(cls, resource_type, message=None):
        """Build the error to raise when the caller may not touch a resource."""
        if cls.mask_not_found(resource_type):
            label = cls.MASKED_RESOURCES[resource_type]
            return NotFoundError(message or f"{label} not found or does not belong to you")
        return ForbiddenError(message or cls.UNMASKED_RESOURCES[resource_type])
