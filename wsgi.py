"""
WSGI / Flask-Migrate entry point for the Traceable Requirements Platform.

Usage:
    gunicorn wsgi:app
    flask --app wsgi create-user alice@example.com --name "Alice"
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from app import create_app

app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000)
