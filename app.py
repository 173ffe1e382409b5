"""
Main Flask application entry point for the Noloji payments service
"""
import os
import logging
from flask import Flask, jsonify, request
from config import Config
from models import db
from utils.mail import mail
from utils.stk_push import StkPushService


def configure_logging(app):
    """Root log level from LOG_LEVEL; keeps existing handlers (gunicorn installs its own)."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)


def create_app(config_class=Config):
    """Application factory pattern. DB init runs inside app_context; non-fatal on failure."""
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_logging(app)

    db.init_app(app)
    mail.init_app(app)
    app.extensions["stk_push"] = StkPushService.from_config(app.config)

    @app.errorhandler(500)
    def handle_500_error(e):
        if request.path.startswith("/payments/"):
            return jsonify({"success": False, "error": "Internal server error"}), 500
        return e

    # Create tables only inside app context; do not crash if DB temporarily unavailable
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            logging.getLogger(__name__).warning("Database init skipped (non-fatal): %s", e)

    from routes import payments_bp
    app.register_blueprint(payments_bp)

    from commands import payments_cli
    app.cli.add_command(payments_cli)

    @app.route("/")
    def index():
        return jsonify({
            "message": "Noloji ISP OS Payments API",
            "endpoints": {
                "stk_push": "/payments/stk-push",
                "stk_callback": "/payments/stk-callback",
                "stk_status": "/payments/stk-status?checkout_request_id=...",
            },
        })

    if not app.extensions["stk_push"].is_configured():
        app.logger.warning("M-Pesa is not configured: set MPESA_CONSUMER_KEY, "
                           "MPESA_CONSUMER_SECRET and MPESA_CALLBACK_URL")

    return app

# WSGI entry point (Railway/Render): gunicorn app:app
app = create_app()
application = app

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "false").lower() in ("true", "1"))
