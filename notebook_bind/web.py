"""
Web interface for notebook-bind using Flask.
"""

import logging
import socket
import threading
import time
from pathlib import Path
from typing import Iterable, Optional, Union

from flask import Flask, Response, request
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException
from werkzeug.serving import make_server

from notebook_bind.config import DEFAULT_PORT, ServerOptions
from notebook_bind.errors import BindServerError, DecodeError, NotebookNotFound
from notebook_bind.protocol import (
    apply_bond_update,
    decode_bonds,
    decode_path_payload,
    rebind,
    top_params,
)
from notebook_bind.session import BoundSession, SessionRegistry
from notebook_bind.utils import pack

logger = logging.getLogger(__name__)

TEN_YEARS = 10 * 365 * 24 * 60 * 60


class ServerState:
    """Shared by all request threads; ``registry`` is None while loading."""

    def __init__(self, options: ServerOptions, registry: Optional[SessionRegistry] = None):
        self.options = options
        self.registry = registry

    @property
    def ready(self) -> bool:
        return self.registry is not None


def _to_json(o):
    tolist = getattr(o, "tolist", None)
    if callable(tolist):
        return tolist()
    if isinstance(o, (set, frozenset)):
        return sorted(o, key=str)
    try:
        return DefaultJSONProvider.default(o)
    except TypeError:
        return repr(o)


class BindJSONProvider(DefaultJSONProvider):
    """JSON provider that also handles numpy-like values and sets."""

    default = staticmethod(_to_json)


# ---------------------------------------------------------------------- #
# Response helpers
# ---------------------------------------------------------------------- #

def with_msgpack(response: Response) -> Response:
    response.headers["Content-Type"] = "application/msgpack"
    return response


def with_json(response: Response) -> Response:
    response.headers["Content-Type"] = "application/json"
    return response


def with_cors(response: Response) -> Response:
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    return response


def with_cachable(response: Response) -> Response:
    response.headers["Cache-Control"] = f"public, max-age={TEN_YEARS}, immutable"
    return response


def with_not_cachable(response: Response) -> Response:
    response.headers["Cache-Control"] = "no-store, no-cache, max-age=5"
    return response


def _text(body: str, status: int = 200) -> Response:
    return Response(body, status=status, mimetype="text/plain")


def create_app(options: Optional[ServerOptions] = None, registry: Optional[SessionRegistry] = None) -> Flask:
    """
    Build the Flask app serving the sessions of ``registry``.

    Until a registry is attached (``app.extensions["notebook_bind"].registry``)
    every request is answered with 503.
    """
    app = Flask(__name__)
    app.json = BindJSONProvider(app)
    state = ServerState(options or ServerOptions(), registry)
    app.extensions["notebook_bind"] = state

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def get_session(notebook_hash: str) -> BoundSession:
        session = state.registry.lookup(notebook_hash)
        if session is None:
            # The client's notebook file does not match any notebook served
            # here byte for byte: a deployment in progress, or the file was
            # changed by running it (serve temp copies to avoid that).
            logger.info("Request hash not found: %s", notebook_hash)
            raise NotebookNotFound(notebook_hash)
        return session

    def bond_response(session: BoundSession, payload: bytes) -> Response:
        bonds = decode_bonds(payload)
        logger.debug("Deserialized bond values %s", bonds)

        if state.options.simulated_lag:
            time.sleep(state.options.simulated_lag)

        result = apply_bond_update(session, bonds)
        return with_msgpack(with_cachable(Response(pack(result.to_dict()))))

    @app.before_request
    def require_ready():
        if not state.ready:
            return with_not_cachable(_text("Still loading the notebooks... check back later!", 503))

    @app.after_request
    def add_common_headers(response: Response) -> Response:
        response.headers["Referrer-Policy"] = "origin-when-cross-origin"
        if "Cache-Control" not in response.headers:
            with_not_cachable(response)
        return with_cors(response)

    @app.errorhandler(BindServerError)
    def handle_bind_error(error: BindServerError):
        if error.status_code >= 500:
            logger.error("%s: %s", type(error).__name__, error.message, exc_info=error)
        return with_not_cachable(_text(error.message, error.status_code))

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unhandled error while serving %s", request.path)
        return with_not_cachable(_text("Internal server error", 500))

    # ------------------------------------------------------------------ #
    # Routes
    # ------------------------------------------------------------------ #

    @app.route("/")
    def index():
        return with_not_cachable(_text("Hi!"))

    @app.route("/staterequest/<notebook_hash>/", methods=["POST"])
    def staterequest_post(notebook_hash: str):
        """Happens whenever a client moves a slider."""
        session = get_session(notebook_hash)
        return bond_response(session, request.get_data())

    @app.route("/staterequest/<notebook_hash>/<path:payload>", methods=["GET"])
    def staterequest_get(notebook_hash: str, payload: str):
        """Same as the POST form, with the payload base64-encoded in the URL."""
        session = get_session(notebook_hash)
        return bond_response(session, decode_path_payload(payload))

    @app.route("/bondconnections/<notebook_hash>/", methods=["GET"])
    def bondconnections(notebook_hash: str):
        session = get_session(notebook_hash)
        return with_msgpack(with_cachable(Response(pack(session.bond_connections))))

    @app.route("/interface/<notebook_hash>/<outputs>/", methods=["POST"])
    def interface(notebook_hash: str, outputs: str):
        session = get_session(notebook_hash)
        body = request.get_json(force=True, silent=True) if request.get_data() else {}
        if not isinstance(body, dict):
            raise DecodeError("Request body must be a JSON object")

        values = rebind(session, outputs.split(), body)
        return with_json(with_not_cachable(app.json.response(values)))

    @app.route("/topparams/<notebook_hash>/", methods=["POST"])
    def topparams(notebook_hash: str):
        session = get_session(notebook_hash)
        params = top_params(session, request.args.get("out", ""))
        # Static analysis of the hashed notebook only, so it can be cached
        # like bond connections even though it is JSON.
        return with_json(with_cachable(app.json.response(params)))

    return app


def find_free_port(host: str, start: int = DEFAULT_PORT, attempts: int = 100) -> int:
    """First port from ``start`` upwards that can be bound on ``host``."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    for port in range(start, start + attempts):
        with socket.socket(family, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                continue
            return port
    raise OSError(f"No free port in {start}-{start + attempts - 1} on {host}")


def serve(paths: Iterable[Union[str, Path]], options: Optional[ServerOptions] = None):
    """
    Serve the given notebooks until interrupted.

    The HTTP server starts first and answers 503 while the notebooks run
    for the first time. Failing to bind the port, or a notebook failing
    its first run, ends the process.
    """
    options = options or ServerOptions()
    logger.warning(
        "Make sure that you run this bind server inside a containerized environment -- "
        "it is not intended to be secure. Assume that users can execute arbitrary code "
        "inside your notebooks."
    )

    app = create_app(options)
    port = options.port if options.port is not None else find_free_port(options.host)
    server = make_server(options.host, port, app, threaded=True)
    logger.info("Starting server on http://%s:%d", options.host, port)

    thread = threading.Thread(target=server.serve_forever, name="notebook-bind-http", daemon=True)
    thread.start()
    try:
        app.extensions["notebook_bind"].registry = SessionRegistry.from_paths(paths, options)
        logger.info("-- SERVER READY --")
        thread.join()
    finally:
        server.shutdown()
