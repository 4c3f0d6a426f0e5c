"""
WSGI entry point for the promotion engine.

For gunicorn: wsgi:app
"""

from promotion_engine import create_app

app = create_app()
