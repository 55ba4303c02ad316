"""
WSGI entry point for the access gate
"""
from dotenv import load_dotenv

load_dotenv()

from dogeauth.factory import create_app  # noqa: E402

# Gunicorn/uWSGI compatibility
application = app = create_app()

if __name__ == "__main__":
    cfg = app.config["APP_CONFIG"]
    app.run(host=cfg["APP_HOST"], port=cfg["APP_PORT"], debug=False, threaded=True)
