import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from pathlib import Path
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()

from .config import Config
from .db_maintenance import ensure_database_schema


def _extract_bearer_token(header: str | None) -> str | None:
    header = header or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _serving_requests() -> bool:
    """False inside `flask` maintenance commands such as `init-db` or `db upgrade`."""
    ctx = click.get_current_context(silent=True)
    return ctx is None or ctx.info_name == "run"


def create_app(config_class: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    config = config_class or Config
    app.config.from_object(config)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if db_uri:
        try:
            url = make_url(db_uri)
        except ArgumentError:
            url = None
        if url and url.drivername == "sqlite" and url.database and url.database != ":memory:":
            db_path = Path(url.database)
            if not db_path.is_absolute():
                db_path = Path(app.root_path) / db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from .models import Student, StudentAuthToken
    from .services import clock

    @login_manager.request_loader
    def load_user_from_request(request) -> Student | None:
        token_value = _extract_bearer_token(request.headers.get("Authorization"))
        if not token_value:
            return None
        token = StudentAuthToken.query.filter_by(token=token_value, revoked=False).first()
        if not token or token.expires_at <= clock.utcnow():
            return None
        return token.student

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Invalid or missing authentication token.", "code": "unauthorized"}), 401

    from .api import api_bp

    app.register_blueprint(api_bp)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    with app.app_context():
        ensure_database_schema(db.engine, app.logger)

    if app.config.get("EXAM_SWEEP_ENABLED") and _serving_requests():
        from .services.expiry import ExpirySweeper

        sweeper = ExpirySweeper(app, interval=app.config["EXAM_SWEEP_INTERVAL_SECONDS"])
        app.extensions["exam_sweeper"] = sweeper
        sweeper.start()

    return app
