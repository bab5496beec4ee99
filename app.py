import os
import secrets
import time

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_login import current_user
from werkzeug.middleware.proxy_fix import ProxyFix

import db
from auth import auth_bp, login_manager
from book_routes import books_bp
from club_routes import book_clubs_bp, forums_bp
from error_handling import register_error_handlers
from marketplace_routes import marketplace_bp
from negotiation_routes import negotiations_bp
from observability import log_alert, log_event, log_http_request, log_http_response
from rate_limiter import add_rate_limit_headers
from security import SecurityConfig
from social_routes import activity_bp, messages_bp, profiles_bp
from swagger_config import init_swagger
from utils import env_flag, logger

# Load environment variables
load_dotenv()

app = Flask(__name__)
# Trust proxy headers for real client IP and scheme
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)
app.secret_key = SecurityConfig.get_secret_key()

app.config['RATE_LIMIT_ENABLED'] = env_flag('RATE_LIMIT_ENABLED', True)
app.config['EXPOSE_RESET_TOKENS'] = env_flag('EXPOSE_RESET_TOKENS', False)
app.json.sort_keys = False

cors_origins = os.getenv('CORS_ORIGINS', '*')
CORS(app, origins=[origin.strip() for origin in cors_origins.split(',')] if cors_origins != '*' else '*')

login_manager.init_app(app)
register_error_handlers(app)
SecurityConfig.setup_security_headers(app)

for blueprint in (
    auth_bp,
    books_bp,
    marketplace_bp,
    negotiations_bp,
    profiles_bp,
    activity_bp,
    messages_bp,
    book_clubs_bp,
    forums_bp,
):
    app.register_blueprint(blueprint)

# Initialize Swagger documentation
swagger = init_swagger(app)

db.init_db()


def _current_user_id():
    return current_user.id if current_user.is_authenticated else None


@app.before_request
def observability_request_context():
    if request.path.startswith("/flasgger_static") or request.path == "/favicon.ico":
        g.skip_observability = True
        return None

    g.skip_observability = False
    g.request_start_time = time.time()
    g.request_id = request.headers.get("X-Request-ID") or secrets.token_hex(8)
    log_http_request(
        request_id=g.request_id,
        method=request.method,
        path=request.path,
        query=request.query_string.decode("utf-8", errors="ignore") if request.query_string else None,
        remote_addr=request.headers.get("X-Forwarded-For", request.remote_addr),
        user=_current_user_id(),
        user_agent=request.headers.get("User-Agent"),
    )


@app.after_request
def after_request(response):
    response = add_rate_limit_headers(response)

    if getattr(g, "skip_observability", False) or not getattr(g, "request_id", None):
        return response

    response.headers.setdefault("X-Request-ID", g.request_id)
    duration_ms = int((time.time() - g.request_start_time) * 1000)
    log_http_response(
        request_id=g.request_id,
        method=request.method,
        path=request.path,
        route=request.url_rule.rule if request.url_rule else None,
        status_code=response.status_code,
        duration_ms=duration_ms,
        content_length=response.calculate_content_length(),
        user=_current_user_id(),
    )
    return response


@app.teardown_request
def observability_teardown(exc):
    if exc is None or getattr(g, "skip_observability", False):
        return
    log_alert(
        "http.request.error",
        str(exc),
        severity="error",
        request_id=getattr(g, "request_id", None),
        method=request.method,
        path=request.path,
    )


@app.route("/api/health")
def health_check():
    """Health check endpoint for monitoring
    ---
    tags:
      - Health
    responses:
      200:
        description: API and database are reachable
      503:
        description: Database is unreachable
    """
    database_ok = db.check_database()
    status = "healthy" if database_ok else "unhealthy"
    log_event("health.check", status=status, severity="info" if database_ok else "warning")
    return jsonify({
        "status": status,
        "timestamp": db.utcnow().isoformat(),
        "checks": {"database": {"status": "connected" if database_ok else "error"}},
    }), 200 if database_ok else 503


if __name__ == "__main__":
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    logger.info(f"Starting Book Bazaar API on port {port} (docs at /api-docs)")
    app.run(host="0.0.0.0", port=port, debug=debug)
