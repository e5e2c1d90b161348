import os
import logging

import click
from flask import Flask, jsonify

from bizbilling.config import config_by_name
from bizbilling.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- PayPal client (stateless, one per process) ---
    from bizbilling.services.paypal_service import PayPalClient
    app.extensions["paypal"] = PayPalClient.from_config(app.config)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from bizbilling import models  # noqa: F401

    # --- Register blueprints ---
    from bizbilling.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    # --- Health check ---
    @app.route("/")
    def index():
        return jsonify({"success": True, "service": "bizmanager-billing"})

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"success": False, "error": "Too many requests"}), 429

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-plans")
    @click.option(
        "--plan",
        "plans",
        multiple=True,
        metavar="PAYPAL_PLAN_ID=PRODUCT_ID",
        help="Plan mapping, e.g. P-5ML4271244454362WXNWU5NQ=BIZMANAGER_PRO",
    )
    def seed_plans(plans):
        """Map PayPal billing plan IDs to our products.

        Usage:
            flask seed-plans --plan P-STARTER123=BIZMANAGER_STARTER --plan P-PRO456=BIZMANAGER_PRO
        """
        from bizbilling.services.subscription_repository import (
            plan_type_for_product,
            upsert_billing_plan,
        )

        if not plans:
            click.echo("Nothing to do: pass at least one --plan PAYPAL_PLAN_ID=PRODUCT_ID")
            return

        for mapping in plans:
            plan_id, sep, product_id = mapping.partition("=")
            if not sep or not plan_id or not product_id:
                raise click.BadParameter(f"Expected PAYPAL_PLAN_ID=PRODUCT_ID, got {mapping!r}")
            if plan_type_for_product(product_id) is None:
                raise click.BadParameter(f"Unrecognised product {product_id!r}")
            upsert_billing_plan(plan_id.strip(), product_id.strip().upper())
            click.echo(f"  {plan_id} -> {product_id.upper()}")

        db.session.commit()
        click.echo(f"Seeded {len(plans)} billing plan(s).")

    @app.cli.command("cancel-subscription")
    @click.argument("subscription_id")
    @click.option("--reason", default="Cancelled by user", help="Reason sent to PayPal")
    def cancel_subscription_cmd(subscription_id, reason):
        """Cancel a subscription at PayPal and locally."""
        from bizbilling.errors import BillingError
        from bizbilling.services.subscription_control import cancel_subscription

        try:
            sub = cancel_subscription(subscription_id, reason)
        except BillingError as e:
            raise click.ClickException(str(e))
        click.echo(f"Cancelled {subscription_id}; access until {sub.current_period_end}")

    @app.cli.command("reactivate-subscription")
    @click.argument("subscription_id")
    @click.option("--reason", default="Reactivated by user", help="Reason sent to PayPal")
    def reactivate_subscription_cmd(subscription_id, reason):
        """Reactivate a cancelled or suspended subscription."""
        from bizbilling.errors import BillingError
        from bizbilling.services.subscription_control import reactivate_subscription

        try:
            reactivate_subscription(subscription_id, reason)
        except BillingError as e:
            raise click.ClickException(str(e))
        click.echo(f"Reactivated {subscription_id}")

    @app.cli.command("retry-payment")
    @click.argument("subscription_id")
    def retry_payment_cmd(subscription_id):
        """Resume billing for a suspended subscription."""
        from bizbilling.errors import BillingError
        from bizbilling.services.subscription_control import retry_payment

        try:
            status = retry_payment(subscription_id)
        except BillingError as e:
            raise click.ClickException(str(e))
        click.echo(f"Payment retry initiated for {subscription_id} (PayPal status: {status})")

    @app.cli.command("sync-subscription")
    @click.argument("subscription_id")
    def sync_subscription_cmd(subscription_id):
        """Overwrite local subscription state from PayPal."""
        from bizbilling.errors import BillingError
        from bizbilling.services.subscription_control import sync_subscription

        try:
            updates = sync_subscription(subscription_id)
        except BillingError as e:
            raise click.ClickException(str(e))

        click.echo(f"Synced {subscription_id}:")
        for name, value in updates.items():
            if name != "billing_cycles":
                click.echo(f"  {name}: {value}")

    @app.cli.command("webhook-events")
    @click.option("--limit", default=20, show_default=True, help="Number of events to show")
    @click.option("--failed", is_flag=True, help="Only events whose last attempt failed")
    def webhook_events(limit, failed):
        """List recent PayPal webhook events.

        Usage:
            flask webhook-events
            flask webhook-events --failed --limit 50
        """
        from bizbilling.services.event_store import list_recent

        events = list_recent(limit=limit, failed_only=failed)
        if not events:
            click.echo("No webhook events.")
            return

        for event in events:
            if not event.processed:
                state = "in-flight"
            elif event.processing_error:
                state = "FAILED"
            else:
                state = "ok"
            click.echo(
                f"{event.received_at}  {event.event_id}  {event.event_type}  "
                f"[{state}] attempts={event.attempts}"
            )
            if event.processing_error:
                click.echo(f"    error: {event.processing_error}")
            if event.audit_note:
                click.echo(f"    note:  {event.audit_note}")
