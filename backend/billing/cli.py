# Overview: Flask CLI command groups for bootstrap, tenants, sessions, and inspection.

# backend/billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to billing (PowerShell: $env:FLASK_APP="billing").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Vendors (tenants):
# - python -m flask vendors list
# - python -m flask vendors create --name "Sharma Traders" --mobile 9000000000
# - python -m flask vendors token --vendor-id 1 [--role vendor|customer|admin] [--customer-id 3]
#   Issue a bearer token (printed once, stored hashed).
#
# Customers:
# - python -m flask customers create --vendor-id 1 --name "Asha" --mobile 9000000001
#
# Invoices:
# - python -m flask invoices settings --vendor-id 1
# - python -m flask invoices audit --vendor-id 1
#   Check used_numbers is the contiguous run start_count..current_count-1.
#
# Imports:
# - python -m flask imports run --vendor-id 1 --file export.json
#   Run an import synchronously and print the summary.
# - python -m flask imports fail-stale --minutes 60
#   Fail accepted/running jobs the worker never finished.

import json

import click
from flask.cli import with_appcontext

from .errors import BillingError
from .extensions import db
from .models import Customer, Vendor
from .services import import_service, invoice_sequence_service, session_service
from .services.tenant_service import VALID_ROLES


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created")


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

    click.echo("PASS Database reset complete")


@click.group('vendors')
def vendors_group():
    """Vendor (tenant) management."""


@vendors_group.command('list')
@with_appcontext
def list_vendors_cli():
    vendors = db.session.query(Vendor).order_by(Vendor.id).all()
    if not vendors:
        click.echo("No vendors found")
        return
    for vendor in vendors:
        status = "active" if vendor.is_active else "inactive"
        click.echo(f"{vendor.id:>5}  {vendor.vendor_name:<30} {vendor.mobile_number or '-':<15} {status}")


@vendors_group.command('create')
@click.option('--name', prompt=True, help='Vendor name')
@click.option('--business-name', default=None, help='Business name')
@click.option('--mobile', default=None, help='Mobile number (unique)')
@click.option('--gst-number', default=None, help='GSTIN')
@with_appcontext
def create_vendor_cli(name, business_name, mobile, gst_number):
    """Create a new vendor (tenant)."""
    if mobile and db.session.query(Vendor).filter_by(mobile_number=mobile).first():
        click.echo(f"FAIL Vendor with mobile '{mobile}' already exists")
        return

    vendor = Vendor(vendor_name=name, business_name=business_name, mobile_number=mobile, gst_number=gst_number)
    db.session.add(vendor)
    db.session.flush()
    # Numbering state exists from day one
    invoice_sequence_service.get_settings(vendor.id)
    db.session.commit()

    click.echo(f"PASS Created vendor: {vendor.vendor_name} (ID: {vendor.id})")


@vendors_group.command('token')
@click.option('--vendor-id', type=int, default=None, help='Vendor ID (not needed for admin)')
@click.option('--role', type=click.Choice(VALID_ROLES), default='vendor', help='Session role')
@click.option('--customer-id', type=int, default=None, help='Customer ID for customer sessions')
@click.option('--ttl-hours', type=int, default=None, help='Token lifetime in hours')
@with_appcontext
def issue_token_cli(vendor_id, role, customer_id, ttl_hours):
    """Issue a bearer token. The raw token is shown once."""
    from flask import current_app

    try:
        session, token = session_service.create_session(
            role,
            vendor_id=vendor_id,
            customer_id=customer_id,
            ttl_hours=ttl_hours or current_app.config["SESSION_TTL_HOURS"],
        )
    except BillingError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Session {session.id} ({role}) expires {session.expires_at.isoformat()}")
    click.echo(token)


@click.group('customers')
def customers_group():
    """Customer management."""


@customers_group.command('create')
@click.option('--vendor-id', type=int, required=True, help='Vendor ID')
@click.option('--name', prompt=True, help='Customer name')
@click.option('--mobile', prompt=True, help='Mobile number (unique per vendor)')
@click.option('--business-name', default=None)
@click.option('--gst-number', default=None)
@with_appcontext
def create_customer_cli(vendor_id, name, mobile, business_name, gst_number):
    if not db.session.query(Vendor).filter_by(id=vendor_id).first():
        click.echo(f"FAIL Vendor ID {vendor_id} not found")
        return
    if db.session.query(Customer).filter_by(created_by=vendor_id, mobile_number=mobile).first():
        click.echo(f"FAIL Customer with mobile '{mobile}' already exists for this vendor")
        return

    customer = Customer(
        created_by=vendor_id,
        customer_name=name,
        mobile_number=mobile,
        business_name=business_name,
        gst_number=gst_number,
    )
    db.session.add(customer)
    db.session.commit()
    click.echo(f"PASS Created customer: {customer.customer_name} (ID: {customer.id}, Vendor: {vendor_id})")


@click.group('invoices')
def invoices_group():
    """Invoice numbering inspection."""


@invoices_group.command('settings')
@click.option('--vendor-id', type=int, required=True)
@with_appcontext
def show_settings_cli(vendor_id):
    settings = invoice_sequence_service.get_settings(vendor_id)
    db.session.commit()
    click.echo(invoice_sequence_service.dump_settings(settings))


@invoices_group.command('audit')
@click.option('--vendor-id', type=int, required=True)
@with_appcontext
def audit_invoices_cli(vendor_id):
    """Report gaps, duplicates and bills missing from used_numbers."""
    report = invoice_sequence_service.audit_sequence(vendor_id)
    click.echo(json.dumps(report, indent=2))
    if report["contiguous"] and not report["unreserved_bills"]:
        click.echo("PASS Invoice sequence is contiguous")
    else:
        click.echo("FAIL Invoice sequence has problems")


@click.group('imports')
def imports_group():
    """Data import commands."""


@imports_group.command('run')
@click.option('--vendor-id', type=int, required=True)
@click.option('--file', 'path', type=click.Path(exists=True, dir_okay=False), required=True)
@with_appcontext
def run_import_cli(vendor_id, path):
    """Run an import in the foreground."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    try:
        summary = import_service.process_import(vendor_id, data)
    except BillingError as e:
        click.echo(f"FAIL {e.message}")
        return

    for entity in import_service.ENTITIES:
        row = summary[entity]
        click.echo(f"{entity:<10} inserted={row['inserted']:<6} skipped={row['skipped']:<6} errors={len(row['errors'])}")


@imports_group.command('fail-stale')
@click.option('--minutes', type=int, default=None, help='Age threshold (default IMPORT_STALE_MINUTES)')
@with_appcontext
def fail_stale_imports_cli(minutes):
    """Mark stuck import jobs failed."""
    stale = import_service.fail_stale_jobs(minutes)
    if not stale:
        click.echo("PASS No stale import jobs")
        return
    for job in stale:
        click.echo(f"FAIL Import job {job.id} (vendor {job.vendor_id}) marked failed")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(vendors_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(imports_group)
