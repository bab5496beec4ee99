# auth.py - Accounts, JWT bearer authentication and password reset
import smtplib

import jwt
from flask import Blueprint, current_app, g, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required

import db
from email_utils import EmailConfigurationError, send_password_reset_email
from error_handling import AuthenticationError, ValidationError, json_body, require_fields
from observability import log_event
from rate_limiter import rate_limit
from security import SecurityConfig
from utils import get_client_ip, logger

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

login_manager = LoginManager()
login_manager.session_protection = None

GENERIC_RESET_MESSAGE = "If an account with that email exists, a password reset link has been sent"


class User(UserMixin):
    """Authenticated caller, rebuilt from the bearer token on every request."""

    def __init__(self, user_id, username, email):
        self.id = user_id
        self.username = username
        self.email = email

    @classmethod
    def from_row(cls, row):
        return cls(row["id"], row["username"], row["email"])


def issue_token(user):
    now = db.utcnow()
    payload = {
        "id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "iat": now,
        "exp": now + SecurityConfig.JWT_EXPIRES,
    }
    return jwt.encode(payload, SecurityConfig.get_jwt_secret(), algorithm=SecurityConfig.JWT_ALGORITHM)


def decode_token(token):
    return jwt.decode(token, SecurityConfig.get_jwt_secret(), algorithms=[SecurityConfig.JWT_ALGORITHM])


@login_manager.request_loader
def load_user_from_request(req):
    header = req.headers.get('Authorization', '')
    if not header:
        return None
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        g.auth_error = "Invalid or expired token"
        return None
    try:
        payload = decode_token(token.strip())
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected bearer token: {e}")
        g.auth_error = "Invalid or expired token"
        return None
    user = db.get_user_by_id(payload.get("id"))
    if not user:
        g.auth_error = "Invalid or expired token"
        return None
    return User.from_row(user)


@login_manager.unauthorized_handler
def unauthorized():
    if g.get('auth_error'):
        return jsonify({"error": g.auth_error}), 403
    return jsonify({"error": "Access token required"}), 401


@auth_bp.route('/register', methods=['POST'])
@rate_limit('register')
def register():
    data = json_body()
    require_fields(data, ("username", "email", "password"), "Username, email, and password are required")
    username = str(data["username"]).strip()
    email = str(data["email"]).strip().lower()
    password = str(data["password"])

    for ok, error in (SecurityConfig.validate_username(username),
                      SecurityConfig.validate_email(email),
                      SecurityConfig.validate_password(password)):
        if not ok:
            raise ValidationError(error)

    user = db.create_user(
        username,
        email,
        SecurityConfig.hash_password(password),
        data.get("full_name"),
        data.get("phone"),
        data.get("address"),
    )
    if not user:
        raise ValidationError("User with this email or username already exists")

    log_event("auth.register", user_id=user["id"], remote_addr=get_client_ip(request))
    return jsonify({
        "message": "User registered successfully",
        "token": issue_token(user),
        "user": user,
    }), 201


@auth_bp.route('/login', methods=['POST'])
@rate_limit('login')
def login():
    data = json_body()
    require_fields(data, ("email", "password"), "Email and password are required")
    record = db.get_user_credentials(str(data["email"]).strip().lower())
    if not record or not SecurityConfig.verify_password(record.pop("password_hash"), str(data["password"])):
        log_event("auth.login_failed", severity="warning", remote_addr=get_client_ip(request))
        raise AuthenticationError("Invalid credentials")

    log_event("auth.login", user_id=record["id"])
    return jsonify({
        "message": "Login successful",
        "token": issue_token(record),
        "user": record,
    })


@auth_bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return jsonify(db.get_user_by_id(current_user.id))


@auth_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    data = json_body()
    user = db.update_user_contact(
        current_user.id,
        full_name=data.get("full_name"),
        phone=data.get("phone"),
        address=data.get("address"),
    )
    return jsonify({"message": "Profile updated successfully", "user": user})


@auth_bp.route('/forgot-password', methods=['POST'])
@rate_limit('password_reset')
def forgot_password():
    data = json_body()
    require_fields(data, ("email",), "Email is required")
    record = db.get_user_credentials(str(data["email"]).strip().lower())
    body = {"message": GENERIC_RESET_MESSAGE}
    if not record:
        return jsonify(body)

    token = SecurityConfig.generate_reset_token()
    db.create_password_reset_token(record["id"], token, db.utcnow() + SecurityConfig.PASSWORD_RESET_TTL)
    try:
        send_password_reset_email(record["email"], record["username"], token)
    except (EmailConfigurationError, smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send password reset email to user {record['id']}: {e}")

    if current_app.config.get("EXPOSE_RESET_TOKENS"):
        body["reset_token"] = token
    return jsonify(body)


@auth_bp.route('/reset-password', methods=['POST'])
@rate_limit('password_reset')
def reset_password():
    data = json_body()
    require_fields(data, ("token", "new_password"), "Token and new password are required")
    new_password = str(data["new_password"])
    ok, error = SecurityConfig.validate_password(new_password)
    if not ok:
        raise ValidationError(error)

    user_id = db.consume_password_reset_token(str(data["token"]), SecurityConfig.hash_password(new_password))
    if user_id is None:
        raise ValidationError("Invalid or expired reset token")
    log_event("auth.password_reset", user_id=user_id)
    return jsonify({"message": "Password has been reset successfully"})
