"""
=============================================================================
ROUND1 INTERVIEW SERVICE - APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the server. When you run "python app.py", the
computer starts a web server that the interview front end talks to. The server:

  1. Creates interview sessions and runs the question/answer loop, asking
     Azure AI Foundry for each next question.
  2. Receives webcam data from the browser (face/pose landmarks or raw JPEG
     frames), turns it into behavior signals, and fuses them with an
     impression classifier.
  3. Scores the finished interview and builds the behavioral report.

The actual URL handlers ("rooms") are defined in routes.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings (API keys, ports, thresholds) come from the .env file and config.py.
  - Never put real API keys in the code; use environment variables.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
# config.py reads os.environ at import time, so .env must be loaded first.
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import the web framework and our own modules
# ---------------------------------------------------------------------------
import logging

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

# ---------------------------------------------------------------------------
# Step 3: Logging and configuration warnings
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Prints e.g. "AZURE_FOUNDRY_KEY is not set" so you know what to add to .env.
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application (the web server).

    What it does:
      - Creates a new Flask "app" object.
      - Enables CORS so the interview front end can call the API from another origin.
      - Enables compression for larger JSON responses (session state, reports).
      - Registers all URL routes from routes.py.

    Returns:
        The configured Flask application.
    """
    app = Flask(__name__)

    # In production you would restrict this to the front end's domain.
    CORS(app, resources={r"/*": {"origins": "*"}})

    Compress(app)

    register_routes(app)

    return app


# ---------------------------------------------------------------------------
# Create the one global Flask application
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# Run the server when this file is executed directly (e.g. "python app.py")
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    # FLASK_DEBUG=true: Flask's development server with reloader.
    # Otherwise: Waitress with 6 worker threads (requests for one session may
    # arrive concurrently; sessions and frame buffers are lock-guarded).
    if config.FLASK_DEBUG:
        app.run(
            host=config.FLASK_HOST,
            port=config.FLASK_PORT,
            debug=True
        )
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
