import json

import click

from .extensions import db
from .models import ShopManager
from .services.catalog import run_pending_propagations


def register_cli(app):
    @app.cli.command("propagate-catalog")
    @click.option("--limit", type=int, default=None, help="Run at most this many jobs.")
    def propagate_catalog(limit) -> None:
        """Resume pending or failed catalog propagation jobs."""
        summary = run_pending_propagations(limit=limit)
        click.echo(json.dumps(summary, indent=2, sort_keys=True))
        if summary["failed"]:
            raise SystemExit(1)

    @app.cli.command("create-manager")
    @click.argument("name")
    @click.option("--phone", default=None, help="Contact phone number.")
    def create_manager(name, phone) -> None:
        """Register a shop manager that orders can be booked under."""
        name = name.strip()
        if not name:
            raise click.BadParameter("name must not be blank", param_hint="NAME")
        manager = ShopManager(name=name, phone=phone)
        db.session.add(manager)
        db.session.commit()
        click.echo(f"Created shop manager {manager.id}: {manager.name}")
