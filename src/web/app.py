"""
Flask Web Application
Read-only status routes over the core service
"""
from flask import Flask, jsonify, request
import logging
import socket

logger = logging.getLogger("CrownBot")


def get_local_ip():
    """Get local IP address for network access"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "127.0.0.1"


def create_app(core_service, fetch_loop=None) -> Flask:
    """
    Build the status app

    Args:
        core_service: CoreService to report on
        fetch_loop: FetchLoop whose published snapshot is served (optional)
    """
    app = Flask(__name__)

    # Only show warnings and errors, not INFO request lines
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    @app.route('/api/status')
    def api_status():
        """Online accounts and fetch-loop stats"""
        return jsonify({
            "online_accounts": core_service.online_accounts(),
            "fetch_loop": fetch_loop.stats() if fetch_loop else None,
        })

    @app.route('/api/snapshot')
    def api_snapshot():
        """Latest published snapshot, optionally filtered"""
        if fetch_loop is None:
            return jsonify({"error": "Fetch loop is not running"}), 404
        filters = {}
        if request.args.get("showtype"):
            filters["showtype"] = request.args["showtype"]
        if request.args.get("league"):
            filters["league"] = request.args["league"]
        if request.args.get("match_ids"):
            filters["match_ids"] = request.args["match_ids"].split(",")
        if request.args.get("running") in ("true", "false"):
            filters["running"] = request.args["running"] == "true"
        return jsonify(fetch_loop.latest().to_dict(filters))

    @app.route('/api/accounts/<account_id>/online')
    def api_account_online(account_id):
        return jsonify({"account_id": account_id, "online": core_service.is_online(account_id)})

    return app
