"""
Elite Finds — Stock & Revenue Tracker
Flask backend over a JSON document store (SQLite locally, PostgreSQL in the cloud).
"""

import atexit
import functools
import logging
import os
import time
from collections import defaultdict
from datetime import datetime

import bcrypt
from flask import Flask, Response, current_app, jsonify, request, session

from elitefinds import errors
from elitefinds.clocks import world_clocks
from elitefinds.config import ConfigStore
from elitefinds.database import Session
from elitefinds.errors import ValidationError
from elitefinds.services import Backend, parse_date

logger = logging.getLogger(__name__)

# Login rate limiter: in-memory, per IP
_LOGIN_WINDOW = 300    # 5-minute window
_LOGIN_MAX = 10        # max attempts per window

_STATUS = {
    errors.OK: 200,
    errors.VALIDATION: 400,
    errors.NOT_FOUND: 404,
    errors.DUPLICATE: 409,
    errors.IO_ERROR: 500,
    errors.NO_CONNECTION: 503,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def backend():
    return current_app.extensions["elitefinds"]


def respond(result, created=False, payload=None):
    """Result -> JSON response. No-database results carry a redirect home."""
    if result.ok:
        body = {"success": True}
        if payload is not None:
            body.update(payload)
        if result.message:
            body["message"] = result.message
        return jsonify(body), 201 if created else 200

    body = {"error": result.message}
    if result.field:
        body["field"] = result.field
    if result.kind == errors.NO_CONNECTION:
        body["redirect"] = "/"
    return jsonify(body), _STATUS.get(result.kind, 500)


def csv_response(result):
    if not result.ok:
        return respond(result)
    filename, text = result.value
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def date_args():
    """?from=YYYY-MM-DD&to=YYYY-MM-DD, either optional."""
    return (
        parse_date(request.args, "from", "From date"),
        parse_date(request.args, "to", "To date"),
    )


def json_body():
    """Request JSON object; anything else (missing, malformed, a list) reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def login_required(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if "user" not in session:
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated


def _admin_hash():
    password = os.environ.get("ELITEFINDS_ADMIN_PASSWORD", "admin")
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt())


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(config_path=None, db_session=None):
    app = Flask(__name__)

    # SECRET_KEY must be stable in production; random fallback only for local dev
    if os.environ.get("PRODUCTION") and not os.environ.get("SECRET_KEY"):
        raise RuntimeError("SECRET_KEY env var must be set in production")
    app.secret_key = os.environ.get("SECRET_KEY", os.urandom(32).hex())
    app.config["PERMANENT_SESSION_LIFETIME"] = 8 * 60 * 60

    config = ConfigStore(config_path)
    if db_session is None:
        db_session = Session.from_config(config)
    db_session.open()
    if not db_session.is_connected():
        logger.warning("Running without a database; only Settings are available")
    app.extensions["elitefinds"] = Backend(config, db_session)
    app.config["ADMIN_USER"] = os.environ.get("ELITEFINDS_ADMIN_USER", "admin")
    app.config["ADMIN_PASSWORD_HASH"] = _admin_hash()
    login_attempts = defaultdict(list)   # ip -> [timestamp, ...]

    # -----------------------------------------------------------------------
    # Auth
    # -----------------------------------------------------------------------

    @app.route("/api/auth/login", methods=["POST"])
    def api_login():
        ip = request.remote_addr or "unknown"
        now_ts = time.time()
        login_attempts[ip] = [t for t in login_attempts[ip] if now_ts - t < _LOGIN_WINDOW]
        if len(login_attempts[ip]) >= _LOGIN_MAX:
            return jsonify({"error": "Too many login attempts. Please wait a few minutes."}), 429
        login_attempts[ip].append(now_ts)

        data = json_body()
        username = (data.get("username") or "").strip()
        password = data.get("password") or ""

        if username != app.config["ADMIN_USER"] or not bcrypt.checkpw(
            password.encode(), app.config["ADMIN_PASSWORD_HASH"]
        ):
            return jsonify({"error": "Invalid username or password. Please try again."}), 401

        login_attempts.pop(ip, None)
        session.permanent = True
        session["user"] = {"username": username}
        return jsonify({"success": True, "user": session["user"]})

    @app.route("/api/auth/logout", methods=["POST"])
    def api_logout():
        session.pop("user", None)
        return jsonify({"success": True})

    @app.route("/api/auth/me", methods=["GET"])
    def api_me():
        if "user" in session:
            return jsonify(session["user"])
        return jsonify({"error": "Not logged in"}), 401

    # -----------------------------------------------------------------------
    # Home
    # -----------------------------------------------------------------------

    @app.route("/", methods=["GET"])
    @app.route("/api/home", methods=["GET"])
    @login_required
    def home():
        return jsonify({
            "clocks": world_clocks(),
            "connected": backend().session.is_connected(),
        })

    # -----------------------------------------------------------------------
    # Settings API
    # -----------------------------------------------------------------------

    @app.route("/api/settings", methods=["GET"])
    @login_required
    def get_settings():
        result = backend().settings.get()
        return respond(result, payload={"settings": result.value})

    @app.route("/api/settings", methods=["PUT"])
    @login_required
    def update_settings():
        result = backend().settings.save(json_body())
        return respond(result, payload={"settings": result.value})

    @app.route("/api/settings/defaults", methods=["GET"])
    @login_required
    def settings_defaults():
        result = backend().settings.defaults()
        return respond(result, payload={"settings": result.value})

    @app.route("/api/settings/test-connection", methods=["POST"])
    @login_required
    def settings_test_connection():
        return respond(backend().settings.check_connection(json_body()))

    # -----------------------------------------------------------------------
    # Stock API
    # -----------------------------------------------------------------------

    @app.route("/api/stock", methods=["GET"])
    @login_required
    def list_products():
        start, end = date_args()
        service = backend().stock
        result = service.list(request.args.get("q"), start, end)
        if not result.ok:
            return respond(result)
        stats = service.stats(result.value)
        return respond(result, payload={
            "products": [p.to_dict() for p in result.value],
            "stats": stats.value,
        })

    @app.route("/api/stock", methods=["POST"])
    @login_required
    def add_product():
        result = backend().stock.add(json_body())
        return respond(result, created=True, payload={"product": result.value.to_dict()} if result.ok else None)

    @app.route("/api/stock/stats", methods=["GET"])
    @login_required
    def stock_stats():
        result = backend().stock.stats()
        return respond(result, payload={"stats": result.value})

    @app.route("/api/stock/export", methods=["GET"])
    @login_required
    def export_stock_csv():
        return csv_response(backend().stock.export())

    @app.route("/api/stock/<sku>", methods=["GET"])
    @login_required
    def get_product(sku):
        result = backend().stock.get(sku)
        return respond(result, payload={"product": result.value.to_dict()} if result.ok else None)

    @app.route("/api/stock/<sku>", methods=["PUT"])
    @login_required
    def update_product(sku):
        result = backend().stock.edit(sku, json_body())
        return respond(result, payload={"product": result.value.to_dict()} if result.ok else None)

    @app.route("/api/stock/<sku>", methods=["DELETE"])
    @login_required
    def delete_product(sku):
        return respond(backend().stock.delete(sku))

    # -----------------------------------------------------------------------
    # Revenue API
    # -----------------------------------------------------------------------

    @app.route("/api/revenue", methods=["GET"])
    @login_required
    def list_sales():
        start, end = date_args()
        service = backend().revenue
        result = service.list(request.args.get("q"), start, end, request.args.get("sku"))
        if not result.ok:
            return respond(result)
        stats = service.stats(result.value)
        return respond(result, payload={
            "sales": [s.to_dict() for s in result.value],
            "stats": stats.value,
        })

    @app.route("/api/revenue", methods=["POST"])
    @login_required
    def add_sale():
        result = backend().revenue.add(json_body())
        return respond(result, created=True, payload={"sale": result.value.to_dict()} if result.ok else None)

    @app.route("/api/revenue/preview", methods=["POST"])
    @login_required
    def preview_sale():
        result = backend().revenue.preview(json_body())
        return respond(result, payload={"figures": result.value})

    @app.route("/api/revenue/stats", methods=["GET"])
    @login_required
    def revenue_stats():
        result = backend().revenue.stats()
        return respond(result, payload={"stats": result.value})

    @app.route("/api/revenue/next-id", methods=["GET"])
    @login_required
    def next_transaction_id():
        result = backend().revenue.next_transaction_id()
        return respond(result, payload={"transaction_id": result.value})

    @app.route("/api/revenue/skus", methods=["GET"])
    @login_required
    def product_skus():
        result = backend().revenue.product_skus()
        return respond(result, payload={"skus": result.value})

    @app.route("/api/revenue/fees", methods=["GET"])
    @login_required
    def fee_options():
        result = backend().revenue.fee_options()
        return respond(result, payload={"fees": result.value})

    @app.route("/api/revenue/export", methods=["GET"])
    @login_required
    def export_revenue_csv():
        return csv_response(backend().revenue.export())

    @app.route("/api/revenue/<transaction_id>", methods=["GET"])
    @login_required
    def get_sale(transaction_id):
        result = backend().revenue.get(transaction_id)
        return respond(result, payload={"sale": result.value.to_dict()} if result.ok else None)

    @app.route("/api/revenue/<transaction_id>", methods=["PUT"])
    @login_required
    def update_sale(transaction_id):
        result = backend().revenue.edit(transaction_id, json_body())
        return respond(result, payload={"sale": result.value.to_dict()} if result.ok else None)

    @app.route("/api/revenue/<transaction_id>", methods=["DELETE"])
    @login_required
    def delete_sale(transaction_id):
        return respond(backend().revenue.delete(transaction_id))

    # -----------------------------------------------------------------------
    # Logs API
    # -----------------------------------------------------------------------

    @app.route("/api/logs", methods=["GET"])
    @login_required
    def list_logs():
        start, end = date_args()
        result = backend().logs.list(
            request.args.get("q"), start, end,
            request.args.get("module"), request.args.get("action"),
        )
        return respond(result, payload={"logs": [e.to_dict() for e in result.value]} if result.ok else None)

    @app.route("/api/logs/stats", methods=["GET"])
    @login_required
    def log_stats():
        result = backend().logs.stats()
        return respond(result, payload={"stats": result.value})

    @app.route("/api/logs/purge", methods=["POST"])
    @login_required
    def purge_logs():
        result = backend().logs.purge(json_body())
        return respond(result, payload={"deleted": result.value})

    @app.route("/api/logs/export", methods=["GET"])
    @login_required
    def export_logs_csv():
        return csv_response(backend().logs.export())

    # -----------------------------------------------------------------------
    # Errors & health
    # -----------------------------------------------------------------------

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({"error": e.message, "field": e.field}), 400

    @app.route("/api/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring."""
        db = backend().session
        status = "healthy" if db.is_connected() else "degraded"
        return jsonify({
            "status": status,
            "engine": db.engine,
            "connected": db.is_connected(),
            "timestamp": datetime.now().isoformat(),
        })

    return app


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app()
    atexit.register(app.extensions["elitefinds"].close)
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False)
