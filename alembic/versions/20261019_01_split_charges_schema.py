"""split charges schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("username", sa.String(length=100), nullable=True, unique=True),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "merchant_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("charge_processor_id", sa.String(length=20), nullable=False),
        sa.Column("charge_processor_merchant_id", sa.String(length=255), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="usd"),
        sa.Column("country", sa.String(length=2), nullable=True),
        sa.Column("is_stripe_connect", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_merchant_accounts_id", "merchant_accounts", ["id"])
    op.create_index("ix_merchant_accounts_user_id", "merchant_accounts", ["user_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("permalink", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_currency", sa.String(length=3), nullable=False, server_default="usd"),
        sa.Column("max_purchase_count", sa.Integer(), nullable=True),
        sa.Column("is_recurring_billing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subscription_duration", sa.String(length=20), nullable=True),
        sa.Column("free_trial_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("free_trial_duration_amount", sa.Integer(), nullable=True),
        sa.Column("free_trial_duration_unit", sa.String(length=10), nullable=True),
        sa.Column("allow_double_charges", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_products_id", "products", ["id"])
    op.create_index("ix_products_seller_id", "products", ["seller_id"])
    op.create_index("ix_products_permalink", "products", ["permalink"], unique=True)

    op.create_table(
        "offer_codes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("amount_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("universal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_offer_codes_id", "offer_codes", ["id"])
    op.create_index("ix_offer_codes_seller_id", "offer_codes", ["seller_id"])
    op.create_index("ix_offer_codes_code", "offer_codes", ["code"])

    op.create_table(
        "offer_code_products",
        sa.Column("offer_code_id", sa.Integer(), sa.ForeignKey("offer_codes.id"), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), primary_key=True),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=32), nullable=False),
        sa.Column("purchaser_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("browser_guid", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        _created_at(),
    )
    op.create_index("ix_orders_id", "orders", ["id"])
    op.create_index("ix_orders_external_id", "orders", ["external_id"], unique=True)

    op.create_table(
        "charges",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=32), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("merchant_account_id", sa.Integer(), sa.ForeignKey("merchant_accounts.id"), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("gumroad_amount_cents", sa.Integer(), nullable=True),
        sa.Column("processor_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("processor_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("processor_fee_cents", sa.Integer(), nullable=True),
        sa.Column("processor_fee_currency", sa.String(length=3), nullable=True),
        sa.Column("payment_method_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("payment_method_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_setup_intent_id", sa.String(length=255), nullable=True),
        sa.Column("paypal_order_id", sa.String(length=255), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_reversed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("order_id", "seller_id", name="uq_charges_order_seller"),
    )
    op.create_index("ix_charges_id", "charges", ["id"])
    op.create_index("ix_charges_external_id", "charges", ["external_id"], unique=True)
    op.create_index("ix_charges_order_id", "charges", ["order_id"])
    op.create_index("ix_charges_processor_transaction_id", "charges", ["processor_transaction_id"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=32), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("purchaser_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("merchant_account_id", sa.Integer(), sa.ForeignKey("merchant_accounts.id"), nullable=True),
        sa.Column("charge_id", sa.Integer(), sa.ForeignKey("charges.id"), nullable=True),
        sa.Column("offer_code_id", sa.Integer(), sa.ForeignKey("offer_codes.id"), nullable=True),
        sa.Column("line_item_uid", sa.String(length=100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("browser_guid", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("referrer", sa.String(length=255), nullable=True),
        sa.Column("purchase_state", sa.String(length=20), nullable=False, server_default="in_progress"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_transaction_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunded_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("displayed_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("displayed_price_currency", sa.String(length=3), nullable=False, server_default="usd"),
        sa.Column("rate_converted_to_usd", sa.Numeric(18, 6), nullable=True),
        sa.Column("perceived_price_cents", sa.Integer(), nullable=True),
        sa.Column("is_free_trial_purchase", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_original_subscription_purchase", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_upgrade_purchase", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subscription_duration", sa.String(length=20), nullable=True),
        sa.Column("charge_processor_id", sa.String(length=20), nullable=True),
        sa.Column("processor_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("processor_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("processor_setup_intent_id", sa.String(length=255), nullable=True),
        sa.Column("payment_method_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("chargeback_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("chargeback_reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.Column("succeeded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_purchases_id", "purchases", ["id"])
    op.create_index("ix_purchases_external_id", "purchases", ["external_id"], unique=True)
    op.create_index("ix_purchases_order_id", "purchases", ["order_id"])
    op.create_index("ix_purchases_product_id", "purchases", ["product_id"])
    op.create_index("ix_purchases_seller_id", "purchases", ["seller_id"])
    op.create_index("ix_purchases_charge_id", "purchases", ["charge_id"])
    op.create_index("ix_purchases_email", "purchases", ["email"])
    op.create_index("ix_purchases_processor_transaction_id", "purchases", ["processor_transaction_id"])

    op.create_table(
        "gateway_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("charge_id", sa.Integer(), sa.ForeignKey("charges.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("charge_processor_id", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("client_secret", sa.String(length=255), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_gateway_attempts_id", "gateway_attempts", ["id"])
    op.create_index("ix_gateway_attempts_idempotency_key", "gateway_attempts", ["idempotency_key"], unique=True)
    op.create_index("ix_gateway_attempts_order_id", "gateway_attempts", ["order_id"])
    op.create_index("ix_gateway_attempts_client_secret", "gateway_attempts", ["client_secret"])


def downgrade() -> None:
    for table_name in (
        "gateway_attempts",
        "purchases",
        "charges",
        "orders",
        "offer_code_products",
        "offer_codes",
        "products",
        "merchant_accounts",
        "users",
    ):
        op.drop_table(table_name)
