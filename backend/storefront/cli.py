# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend:
# Prereqs:
# - Set FLASK_APP (e.g. FLASK_APP="storefront:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create all tables (safe to run repeatedly).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create demo admin/customer users, products (stocked through the ledger) and one pending order.
#
# Users:
# - python -m flask users create --email admin@example.com --role admin
# - python -m flask users issue-token --email admin@example.com
#   Print a bearer token for API calls.
#
# Inventory:
# - python -m flask inventory reconcile [--product-id 1]
#   Verify the audit log chain against current product quantities.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Order, OrderItem, Product, User, InventoryLogType
from .services import inventory_service, session_service
from .services.concurrency import run_in_transaction


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def system_init():
    db.create_all()
    click.echo("Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset.')
@with_appcontext
def system_reset_db(yes):
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


DEMO_PRODUCTS = (
    ("RING-SOL-001", "Solitaire Diamond Ring", 129900, 8),
    ("NECK-PRL-002", "Freshwater Pearl Necklace", 45900, 3),
    ("EAR-GLD-003", "Gold Hoop Earrings", 18900, 12),
)


@system_group.command('seed-demo')
@with_appcontext
def system_seed_demo():
    """Idempotent demo data. Stock enters through the ledger so the audit chain starts at zero."""
    db.create_all()

    admin = _get_or_create_user("admin@example.com", "admin")
    customer = _get_or_create_user("customer@example.com", "customer")

    products = []
    for sku, title, price_cents, stock in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product is None:
            product = Product(sku=sku, title=title, price_cents=price_cents, quantity=0, status="active")
            db.session.add(product)
            db.session.commit()
            run_in_transaction(lambda session, pid=product.id, qty=stock: inventory_service.adjust(
                session,
                product_id=pid,
                delta=qty,
                type=InventoryLogType.RESTOCK,
                reason="Demo opening stock",
                performed_by=str(admin.id),
            ))
        products.append(product)

    if db.session.query(Order).filter_by(order_number="DEMO-0001").first() is None:
        order = Order(order_number="DEMO-0001", user_id=customer.id)
        order.items = [
            OrderItem(
                position=i,
                product_id=p.id,
                sku=p.sku,
                quantity=1,
                unit_price_cents=p.price_cents,
            )
            for i, p in enumerate(products[:2], start=1)
        ]
        db.session.add(order)
        db.session.commit()

    click.echo(f"Seeded admin={admin.id} customer={customer.id} products={len(products)}")


def _get_or_create_user(email: str, role: str) -> User:
    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        user = User(email=email, role=role, is_active=True)
        db.session.add(user)
        db.session.commit()
    return user


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--email', required=True)
@click.option('--role', type=click.Choice(['customer', 'admin']), default='customer', show_default=True)
@with_appcontext
def users_create(email, role):
    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"User {email} already exists")
    user = User(email=email, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"Created user id={user.id} email={user.email} role={user.role}")


@users_group.command('issue-token')
@click.option('--email', required=True)
@with_appcontext
def users_issue_token(email):
    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        raise click.ClickException(f"User {email} not found")
    try:
        _, token = session_service.create_session(user.id)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(token)


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('reconcile')
@click.option('--product-id', type=int, default=None)
@with_appcontext
def inventory_reconcile(product_id):
    q = db.session.query(Product)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    failures = 0
    for product in q.order_by(Product.id).all():
        problems = inventory_service.verify_ledger(product)
        if problems:
            failures += 1
            click.echo(f"[MISMATCH] {product.sku}")
            for problem in problems:
                click.echo(f"  - {problem}")
        else:
            click.echo(f"[OK] {product.sku} quantity={product.quantity}")

    if failures:
        raise click.ClickException(f"{failures} product(s) failed reconciliation")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
