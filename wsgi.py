"""
WSGI Entry Point for Production Deployment
This file is used by gunicorn to start the application
"""
from app import app

# Export the Flask app as the WSGI application
application = app
