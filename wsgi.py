"""WSGI entry point for Gunicorn."""
from fieldops import create_app

# Create the application instance
app = create_app()

if __name__ == "__main__":
    app.run()
