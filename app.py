"""Flask application serving the SQL resources described in the spec files as JSON."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from sqlalchemy import Engine
from werkzeug.exceptions import HTTPException, InternalServerError
from werkzeug.wrappers import Response

from bootstrap import BootstrapStatus, bootstrap_database
from config import EndpointSpec, Settings, ShelfSpecs, load_settings, load_specs
from database import count_rows, make_engine, run_query
from errors import AuthError, ConfigError, ForbiddenError, InputError, NotFoundError, ShelfError
from schema import apply_schema
from security import authenticate, is_allowed

API_KEY_HEADER = "X-Api-Key"
LIMIT_HEADER = "X-Limit"
OFFSET_HEADER = "X-Offset"
PREFLIGHT_MAX_AGE = 600
BODY_METHODS = ("POST", "PUT")


def _engine() -> Engine:
    return current_app.extensions["sqlshelf_engine"]


def _specs() -> ShelfSpecs:
    return current_app.extensions["sqlshelf_specs"]


# --------------------------------------------------------------------------------------
# Request helpers
# --------------------------------------------------------------------------------------


def _check_access(spec: EndpointSpec) -> None:
    if not spec.allow:
        return
    principal = authenticate(request.headers.get(API_KEY_HEADER), _specs().principals)
    if principal is None:
        raise AuthError(f"A valid {API_KEY_HEADER} header is required")
    if not is_allowed(principal, spec.allow):
        raise ForbiddenError(f"Access to {spec.uri} is not allowed for {principal.id}")


def _body_args() -> dict[str, object]:
    """Read a flat JSON object from the request body."""

    raw = request.get_data(cache=True)
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InputError(f"Wrong JSON format: {exc}") from None
    if not isinstance(payload, dict):
        raise InputError("JSON request body only allowed to be an object")
    for key, value in payload.items():
        if isinstance(value, (dict, list)):
            raise InputError(f'Root JSON must NOT have any nested arrays or objects. See "{key}" property.')
    return payload


def _raw_args() -> dict[str, object]:
    if request.method in BODY_METHODS:
        return _body_args()
    return {name: request.args.get(name) for name in request.args.keys()}


def _parse_non_negative(name: str, raw: object, default: int) -> int:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise InputError(f'Argument "{name}" must be an integer')
    try:
        value = raw if isinstance(raw, int) else int(str(raw))
    except ValueError:
        raise InputError(f'Argument "{name}" must be an integer') from None
    if value < 0:
        raise InputError(f'Argument "{name}" must not be negative')
    return value


def _page(spec: EndpointSpec, raw: dict[str, object]) -> tuple[Optional[int], Optional[int]]:
    if not spec.paginated:
        return None, None
    limit = _parse_non_negative(spec.limit_arg, raw.pop(spec.limit_arg, None), spec.limit_max)
    offset = _parse_non_negative(spec.offset_arg, raw.pop(spec.offset_arg, None), 0)
    return min(limit, spec.limit_max), offset


def _collect_args(spec: EndpointSpec, raw: dict[str, object], path_args: dict[str, Any]) -> dict[str, object]:
    for name in raw:
        if not spec.accepts(name):
            raise InputError(f'Unexpected argument "{name}"')

    provided = {**raw, **path_args}
    converted = apply_schema(spec.schema, provided)

    params: dict[str, object] = {name: None for name in (*spec.args, *spec.schema)}
    params.update(converted)
    return params


def make_resource_view(spec: EndpointSpec) -> Callable[..., Response]:
    """Build the view function serving one endpoint spec."""

    def view(**path_args: Any) -> Response:
        _check_access(spec)
        raw = _raw_args()
        limit, offset = _page(spec, raw)
        params = _collect_args(spec, raw, path_args)

        rows = run_query(_engine(), spec.query, params, limit=limit, offset=offset)

        if spec.one_record:
            if not rows:
                raise NotFoundError(f"Record not found at URI: {request.path}")
            if len(rows) > 1:
                current_app.logger.warning("More than one record returned for URI: %s", request.path)
            response = jsonify(rows[0])
        else:
            response = jsonify(rows)

        if limit:
            response.headers[LIMIT_HEADER] = str(limit)
        if offset:
            response.headers[OFFSET_HEADER] = str(offset)
        return response

    return view


# --------------------------------------------------------------------------------------
# Errors
# --------------------------------------------------------------------------------------


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ShelfError)
    def handle_shelf_error(exc: ShelfError):
        if exc.status_code >= 500:
            app.logger.exception("Request to %s failed", request.path)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(InternalServerError)
    def handle_internal_error(exc: InternalServerError):
        # Flask has already logged the original exception with its traceback.
        return jsonify(ShelfError().to_dict()), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = (exc.name or "error").lower().replace(" ", "_")
        response = jsonify({"code": code, "message": exc.description})
        response.status_code = exc.code or 500
        for name, value in exc.get_headers():
            if name.lower() != "content-type":
                response.headers[name] = value
        return response


# --------------------------------------------------------------------------------------
# Application factory
# --------------------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None, specs: Optional[ShelfSpecs] = None) -> Flask:
    """Seed the database if needed and register one route per endpoint spec."""

    settings = settings or load_settings()
    specs = specs if specs is not None else load_specs(settings.specs_dir)

    app = Flask(__name__)
    app.config["SHELF_SETTINGS"] = settings

    # Ensure the database and seed data exist before serving.
    seeded = bootstrap_database(
        settings.db_file, settings.sql_file, sqlite_bin=settings.sqlite_bin, echo=app.logger.info
    )
    if seeded.status is BootstrapStatus.FAILED:
        app.logger.error("Seeding %s with %s exited with status %s", settings.db_file, settings.sqlite_bin, seeded.returncode)
        raise ConfigError(f"Can't seed {settings.db_file}: {settings.sqlite_bin} exited with status {seeded.returncode}")
    app.logger.info("Using sqlite storage at %s", settings.db_file)

    app.extensions["sqlshelf_engine"] = make_engine(settings.db_file, wal=settings.wal)
    app.extensions["sqlshelf_specs"] = specs

    for spec in specs.endpoints:
        methods = ["GET", *BODY_METHODS] if spec.body_args else ["GET"]
        app.logger.info("Registering resource: %s %s", ",".join(methods), spec.uri)
        app.add_url_rule(spec.uri, endpoint=f"resource:{spec.uri}", view_func=make_resource_view(spec), methods=methods)

    if all(spec.uri != "/" for spec in specs.endpoints):

        @app.route("/")
        def index():
            return jsonify(
                {
                    "endpoints": [spec.uri for spec in specs.endpoints],
                    "tables": count_rows(_engine()),
                }
            )

    # Browsers never send custom headers on preflight, so OPTIONS is answered
    # without an API key check.
    CORS(
        app,
        origins=list(settings.cors_origins),
        send_wildcard=True,
        always_send=False,
        methods=["GET", *BODY_METHODS, "OPTIONS"],
        allow_headers=["Content-Type", API_KEY_HEADER],
        expose_headers=[LIMIT_HEADER, OFFSET_HEADER],
        max_age=PREFLIGHT_MAX_AGE,
    )
    _register_error_handlers(app)
    return app


if __name__ == "__main__":
    shelf_app = create_app()
    shelf_app.run(debug=True, port=shelf_app.config["SHELF_SETTINGS"].port)
