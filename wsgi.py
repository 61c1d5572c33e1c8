"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi run-worker        # compliance worker process
    flask --app wsgi compliance-sweep  # one sweep, summary printed
    flask --app wsgi db upgrade        # Flask-Migrate / Alembic
"""

from compliance_engine import create_app

app = create_app()
