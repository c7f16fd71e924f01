# Overview: Flask CLI command groups for bootstrap, demo data and inventory checks.

# backend/litorder/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask seed demo
#   Region / locality / group / local subcommittee, a small catalog and opening stock.
#
# Inventory checks:
# - python -m flask inventory audit [--organization-id 1]
#   Verify stock invariants and reconcile quantities with the ledger. Exits 1 on drift.
# - python -m flask inventory low-stock [--threshold 10] [--organization-id 1]
#   List stock rows at or below the threshold.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Literature, Organization
from .models.organizations import (
    ORG_TYPE_GROUP,
    ORG_TYPE_LOCAL_SUBCOMMITTEE,
    ORG_TYPE_LOCALITY,
    ORG_TYPE_REGION,
)
from .services import inventory_service
from .services.concurrency import run_in_unit_of_work


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left alone)."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask seed demo' for sample data.")


@click.group('seed')
def seed_group():
    """Sample data for local development."""


DEMO_LITERATURE = [
    # (title, category, price_cents, opening stock at the region)
    ("Basic Text", "BOOK", 2599, 200),
    ("It Works: How and Why", "BOOK", 1150, 120),
    ("Just for Today", "BOOK", 1275, 80),
    ("Introductory Guide", "BOOKLET", 350, 500),
    ("Welcome Keytag", "KEYTAG", 45, 1000),
]


@seed_group.command('demo')
@with_appcontext
def seed_demo():
    """
    Create a small hierarchy, catalog and opening stock.

    Opening stock goes through the ledger (INCOMING), so `inventory audit`
    stays clean. Does nothing if organizations already exist.
    """
    if db.session.query(Organization).first() is not None:
        click.echo("SKIP Organizations already exist; demo data not created.")
        return

    def _op():
        region = Organization(name="Central Region", type=ORG_TYPE_REGION)
        db.session.add(region)
        db.session.flush()

        locality = Organization(name="Riverside Locality", type=ORG_TYPE_LOCALITY, parent_id=region.id)
        db.session.add(locality)
        db.session.flush()

        group = Organization(name="Tuesday Night Group", type=ORG_TYPE_GROUP, parent_id=locality.id)
        subcommittee = Organization(
            name="Riverside H&I Subcommittee",
            type=ORG_TYPE_LOCAL_SUBCOMMITTEE,
            parent_id=locality.id,
        )
        db.session.add_all([group, subcommittee])
        db.session.flush()

        for title, category, price_cents, opening in DEMO_LITERATURE:
            literature = Literature(title=title, category=category, price_cents=price_cents)
            db.session.add(literature)
            db.session.flush()
            inventory_service.receive_incoming(
                region.id,
                literature.id,
                opening,
                price_cents,
                notes="Opening stock",
            )

        return region, locality, group, subcommittee

    orgs = run_in_unit_of_work(_op)
    for org in orgs:
        click.echo(f"PASS {org.type:<20} {org.name} (ID: {org.id})")
    click.echo(f"PASS {len(DEMO_LITERATURE)} literature items stocked at {orgs[0].name}")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('audit')
@click.option('--organization-id', type=int, default=None, help='Limit to one organization')
@with_appcontext
def audit(organization_id):
    """Verify stock invariants and reconcile quantities with the ledger."""
    report = inventory_service.audit_inventory(organization_id=organization_id)

    if not report["problems"]:
        click.echo(f"PASS {report['checked']} record(s) checked, no drift.")
        return

    click.echo(f"FAIL {len(report['problems'])} problem(s) in {report['checked']} record(s):")
    for problem in report["problems"]:
        details = ", ".join(
            f"{k}={v}" for k, v in problem.items()
            if k not in ("organization_id", "literature_id", "problem")
        )
        click.echo(
            f"  org={problem['organization_id']} literature={problem['literature_id']} "
            f"{problem['problem']}: {details}"
        )
    raise SystemExit(1)


@inventory_group.command('low-stock')
@click.option('--threshold', type=int, default=None, help='Quantity at or below which stock is low')
@click.option('--organization-id', type=int, default=None, help='Limit to one organization')
@with_appcontext
def low_stock(threshold, organization_id):
    """List stock rows at or below the threshold."""
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    records = inventory_service.get_low_stock(threshold, organization_id=organization_id)

    if not records:
        click.echo(f"PASS No stock at or below {threshold}.")
        return

    click.echo(f"{'ORG':>5}  {'LIT':>5}  {'QTY':>6}  {'RESERVED':>8}  TITLE")
    for rec in records:
        title = rec.literature.title if rec.literature else "?"
        click.echo(
            f"{rec.organization_id:>5}  {rec.literature_id:>5}  {rec.quantity:>6}  "
            f"{rec.reserved_quantity:>8}  {title}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(inventory_group)
