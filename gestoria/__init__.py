from __future__ import annotations

import logging
from pathlib import Path

import click
from flask import Flask, redirect, render_template, url_for
from flask_login import login_required

from gestoria.core.auth import auth_bp
from gestoria.core.config import Config
from gestoria.core.extensions import db, login_manager, migrate
from gestoria.core.logs import configure_logging
from gestoria.core.models import User, seed_demo_data, utcnow
from gestoria.core.permissions import require_staff
from gestoria.core.utils import money
from gestoria.extranjeria import extranjeria_bp

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    configure_logging(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(extranjeria_bp)

    register_cli(app)
    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return redirect(url_for("dashboard_page"))

    @app.get("/dashboard")
    @login_required
    @require_staff
    def dashboard_page():
        from gestoria.extranjeria.dashboard import dashboard_data

        return render_template("dashboard.html", data=dashboard_data(), money=money)

    @app.errorhandler(403)
    def forbidden(_error):
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(_error):
        return render_template("errors/404.html"), 404


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo users, trámite catalog and clients."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("export-json")
    @click.option(
        "--output",
        type=click.Path(dir_okay=False, writable=True, path_type=Path),
        default=None,
        help="Target file. Defaults to gestoria-export-<timestamp>.json in the current directory.",
    )
    def export_json(output: Path | None) -> None:
        """Write a JSON snapshot of clients, case files, payments and trámites."""
        from gestoria.extranjeria.export import export_filename, export_json_bytes

        now = utcnow()
        target = output or Path(export_filename(now))
        target.write_bytes(export_json_bytes(now))
        logger.info("Export written to %s", target)
        click.echo(f"Export written to {target}")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))
