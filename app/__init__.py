from __future__ import annotations

import logging
from datetime import date

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from app.core.auth import auth_bp
from app.core.config import Config
from app.core.errors import DomainError
from app.core.extensions import db, enable_sqlite_savepoints, login_manager, migrate
from app.core.models import Usuario, seed_demo_data
from app.seguimiento import seguimiento_bp

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            enable_sqlite_savepoints(db.engine)

    app.register_blueprint(auth_bp)
    app.register_blueprint(seguimiento_bp)

    register_cli(app)
    register_error_handlers(app)
    return app


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("app").setLevel(level)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DomainError)
    def domain_error(exc: DomainError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def http_error(exc: HTTPException):
        return jsonify({"error": exc.name, "message": exc.description}), exc.code


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo data: establishments, users, TPT schemes and one index case."""
        if reset:
            db.drop_all()
            db.create_all()
        if not Usuario.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("evaluar-cumplimiento")
    @click.option("--fecha", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Reference date (default today).")
    @click.option("--caso", "codigo_caso", type=str, default=None, help="Optional index case code.")
    def evaluar_cumplimiento(fecha, codigo_caso: str | None) -> None:
        """Evaluate follow-up compliance and reconcile alerts."""
        from app.seguimiento.services import caso_by_codigo, run_compliance_pass

        today = fecha.date() if fecha else date.today()
        caso_ids = None
        if codigo_caso:
            try:
                caso_ids = [caso_by_codigo(codigo_caso.strip().upper()).id]
            except DomainError as exc:
                raise click.ClickException(exc.message) from exc

        result = run_compliance_pass(today, caso_ids=caso_ids)
        click.echo(
            f"[{today.isoformat()}] families={result.families} findings={result.findings} "
            f"created={result.created} escalated={result.escalated} unchanged={result.unchanged} "
            f"failed={len(result.failed)}"
        )
        for failure in result.failed:
            click.echo(f"  caso_indice_id={failure['caso_indice_id']} {failure['error']}: {failure['message']}", err=True)
        if result.failed:
            raise SystemExit(1)


@login_manager.user_loader
def load_user(user_id: str) -> Usuario | None:
    return db.session.get(Usuario, int(user_id))
