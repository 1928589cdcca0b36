"""
=============================================================================
TRADEPAUSE GATE - APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the server. When you run "python app.py", the
computer starts a web server that the trading client talks to before it
places an order. The server:

  1. Receives camera frames (or face landmarks) while the trader takes a short
     assessment, and keeps a running estimate of facial stress.
  2. Receives the results of three quick cognitive tests (impulse control,
     focus, reaction timing).
  3. Combines everything into one decision: allow the trade, make the trader
     wait (cooldown), or block trading for a while.

Think of it like a safety gate: the client asks "may this trader place this
order now?", and the routes in routes.py do the checking.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings (threshold, cooldown, ports, etc.) come from the .env file and config.py.
  - The gating policy can also come from POLICY_URL or POLICY_PATH.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
# The .env file holds settings. We load it from the same folder as this file
# so that config.py can read those values.
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
from utils.policy import load_policy
import config

# ---------------------------------------------------------------------------
# Step 3: Logging and configuration checks
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application (the web server).

    What it does:
      - Creates the Flask "app" object.
      - Enables CORS so the trading client can call the API from another origin.
      - Enables compression for JSON responses.
      - Loads the gating policy (URL, file, or built-in defaults).
      - Registers all URL routes from routes.py.

    Returns:
        The configured Flask application.
    """
    app = Flask(__name__)

    # Allow the client to call our API from another origin.
    # In production you would restrict this to specific domains.
    CORS(app, resources={r"/*": {"origins": "*"}})

    # Compress responses (gzip) when the client supports it.
    Compress(app)

    # Policy must be in place before the first evaluation.
    load_policy()

    # Attach /assessment/*, /cooldown/*, /config/* to this app.
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
    # FLASK_DEBUG=true: Flask's development server (auto-reload, debugger).
    # Otherwise Waitress with 6 threads.
    if config.FLASK_DEBUG:
        app.run(
            host=config.FLASK_HOST,
            port=config.FLASK_PORT,
            debug=True
        )
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
