"""
Swagger API Documentation Configuration
Provides interactive API documentation using Flasgger
"""

from flasgger import Swagger

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Book Bazaar API",
        "description": "Book marketplace: listings, exchanges, negotiations and purchases, "
                       "plus profiles, messages, book clubs and forums",
        "version": "1.0.0",
    },
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "JWT issued by /api/auth/login, sent as 'Bearer <token>'"
        }
    },
    "tags": [
        {
            "name": "Authentication",
            "description": "Registration, login and password reset"
        },
        {
            "name": "Books",
            "description": "Per-user book catalogue"
        },
        {
            "name": "Marketplace",
            "description": "Listings, exchange requests and purchases"
        },
        {
            "name": "Negotiations",
            "description": "Price offers on sell listings"
        },
        {
            "name": "Health",
            "description": "Service health"
        }
    ]
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api-docs"
}


def init_swagger(app):
    """Initialize Swagger documentation"""
    swagger = Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)
    return swagger
