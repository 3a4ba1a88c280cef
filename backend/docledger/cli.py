# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/docledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use "flask db upgrade" in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization / user bootstrap:
# - python -m flask orgs create --name "Acme Corp" --code "ACME"
# - python -m flask orgs list
# - python -m flask users create --org-id 1 --email admin@acme.test --role admin
# - python -m flask customers create --org-id 1 --name "Hofer GmbH"
#
# Stock:
# - python -m flask stock set --org-id 1 --product-id 3 --level 40
#   Authoritative overwrite after a physical count (notifies on a low-stock crossing).
# - python -m flask stock low --org-id 1
#   List tracked products at or below their minimum.
#
# Documents:
# - python -m flask documents mark-overdue [--org-id 1]
#   Move sent invoices past their due date to overdue (all orgs when omitted).
# - python -m flask documents drifted --org-id 1
#   List documents whose last stock reconciliation failed.
#
# Sequences:
# - python -m flask sequences show --org-id 1
#   Show the last issued value per document type.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import DocumentSequence, Organization
from .models.tenancy import USER_ROLES
from .services import document_service, inventory_service, tenant_service
from .services.inventory_service import StockLedgerError
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the models."""
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

    click.echo("PASS Database reset complete.")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id.asc()).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active'}")
    for org in orgs:
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str}")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    try:
        org = tenant_service.create_organization(name, code)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@click.group('users')
def users_group():
    """User bootstrap commands (production users come from the auth service)."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(list(USER_ROLES)), prompt=True, help='Role')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(org_id, email, role, full_name):
    """Create a user in an organization."""
    try:
        user = tenant_service.create_user(org_id, email, role, full_name=full_name)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@click.group('customers')
def customers_group():
    """Customer bootstrap commands."""


@customers_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Customer name')
@with_appcontext
def create_customer_cli(org_id, name):
    try:
        customer = tenant_service.create_customer(org_id, name)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created customer {customer.customer_number} (ID: {customer.id})")


@click.group('stock')
def stock_group():
    """Stock counter commands."""


@stock_group.command('set')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--level', type=int, default=None, help='New stock level (omit to untrack)')
@with_appcontext
def set_stock_cli(org_id, product_id, level):
    """Overwrite a product's stock level (physical count)."""
    try:
        change = inventory_service.set_stock_level(org_id, product_id, level)
    except StockLedgerError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(
        f"PASS {change.product_name}: {change.before} -> {change.after} ({change.stock_status})"
        + (" [low-stock alert sent]" if change.crossed_threshold else "")
    )


@stock_group.command('low')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def low_stock_cli(org_id):
    """List tracked products at or below their minimum."""
    products = inventory_service.list_low_stock_products(org_id)
    if not products:
        click.echo("No products at or below their minimum.")
        return
    for p in products:
        click.echo(f"{p.id:<6} {p.name:<40} {p.stock_level:>6} / min {p.minimum_stock_level}")


@click.group('documents')
def documents_group():
    """Document maintenance commands."""


@documents_group.command('mark-overdue')
@click.option('--org-id', type=int, default=None, help='Organization ID (all active orgs when omitted)')
@with_appcontext
def mark_overdue_cli(org_id):
    """Move sent invoices past their due date to overdue."""
    if org_id is None:
        org_ids = [
            row.id for row in db.session.query(Organization.id).filter(Organization.is_active == True).all()  # noqa: E712
        ]
    else:
        org_ids = [org_id]

    total = 0
    for oid in org_ids:
        results = document_service.mark_overdue_invoices(oid)
        for result in results:
            click.echo(f"  org {oid}: {result.document.number} -> overdue")
        total += len(results)
    click.echo(f"PASS {total} invoice(s) marked overdue.")


@documents_group.command('drifted')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def drifted_documents_cli(org_id):
    """List documents whose last stock reconciliation failed."""
    found = 0
    for doc_type in document_service.DOCUMENT_TYPES:
        result = document_service.list_documents(org_id, doc_type, stock_sync_error=True)
        for doc in result["items"]:
            click.echo(f"{doc_type:<8} {doc['number']:<20} {doc['stock_sync_error']}")
            found += 1
    if not found:
        click.echo("No documents with a failed stock reconciliation.")


@click.group('sequences')
def sequences_group():
    """Number sequence inspection."""


@sequences_group.command('show')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def show_sequences_cli(org_id):
    """Show the last issued value per document type."""
    rows = (
        db.session.query(DocumentSequence)
        .filter_by(org_id=org_id)
        .order_by(DocumentSequence.document_type.asc())
        .all()
    )
    if not rows:
        click.echo("No numbers issued yet.")
        return
    for row in rows:
        click.echo(f"{row.document_type:<10} {row.current_value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(documents_group)
    app.cli.add_command(sequences_group)
