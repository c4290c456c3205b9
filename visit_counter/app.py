import ipaddress
import logging
import os
import sys

from flask import Flask, jsonify, render_template, request
from waitress import serve
from werkzeug.exceptions import MethodNotAllowed
from werkzeug.middleware.proxy_fix import ProxyFix

from visit_counter.store import VisitStore

log = logging.getLogger(__name__)

STATS_FILE = os.getenv("STATS_FILE", "stats.json")
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8080"))
THREADS = int(os.getenv("THREADS", "20"))
TRUST_PROXY = os.getenv("TRUST_PROXY", "").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def visitor_identity(remote_addr) -> str:
    """Return the address part of a peer address, or the raw string if unparseable."""
    if not remote_addr:
        return ""
    try:
        ipaddress.ip_address(remote_addr)
        return remote_addr
    except ValueError:
        pass

    host, sep, _port = remote_addr.rpartition(":")
    if not sep:
        return remote_addr
    if host.startswith("["):
        if not host.endswith("]"):
            return remote_addr
        return host[1:-1]
    if ":" in host:
        return remote_addr
    return host


def create_app(store: VisitStore, trust_proxy: bool = False) -> Flask:
    app = Flask(__name__)
    if trust_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

    @app.before_request
    def any_method():
        # Routes answer every method the way they answer GET; OPTIONS and
        # PROPFIND / count as visits just like GET /.
        if not isinstance(request.routing_exception, MethodNotAllowed):
            return None
        adapter = app.url_map.bind_to_environ(request.environ)
        endpoint, values = adapter.match(method="GET")
        return app.view_functions[endpoint](**values)

    @app.route("/favicon.ico", provide_automatic_options=False)
    def favicon():
        # browsers fetch this on every page load; never count it
        return "", 200

    # "/" is the catch-all: any path without its own route counts as a visit.
    @app.route("/", defaults={"path": ""}, provide_automatic_options=False)
    @app.route("/<path:path>", provide_automatic_options=False)
    def home(path):
        identity = visitor_identity(request.remote_addr)
        personal, total, unique = store.hit(identity)
        return render_template("home.html", personal=personal, total=total, unique=unique)

    @app.route("/stats", provide_automatic_options=False)
    def stats():
        with store.locked() as record:
            return render_template("stats.html", record=record)

    @app.route("/api/stats", provide_automatic_options=False)
    def api_stats():
        snap = store.snapshot()
        return jsonify(
            total_visits=snap["total_visits"],
            unique_visitors=len(snap["unique_visitors"]),
            user_visits=snap["user_visits"],
        )

    return app


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = VisitStore(STATS_FILE)
    store.load()
    log.info(
        "Loaded %d visits from %d unique visitors (%s)",
        store.record.total_visits, len(store.record.unique_visitors), STATS_FILE,
    )

    app = create_app(store, trust_proxy=TRUST_PROXY)
    log.info("Visitor counter running on http://%s:%d", HOST, PORT)
    try:
        serve(app, host=HOST, port=PORT, threads=THREADS)
    except OSError as e:
        log.critical("Server failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
