"""Marketplace schema - users, wallets, ledger, catalog, inventory, purchases, disputes

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    """Create every table of the marketplace core."""

    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'seller'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Create wallets table
    op.create_table(
        "wallets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("balance", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0.0000")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_wallets_user_id"),
        sa.UniqueConstraint("user_id", name="uq_wallets_user_id"),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    # Create ledger_transactions table
    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("source_wallet_id", sa.Uuid(), nullable=True),
        sa.Column("destination_wallet_id", sa.Uuid(), nullable=True),
        sa.Column("related_entity_type", sa.String(50), nullable=True),
        sa.Column("related_entity_id", sa.String(64), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["source_wallet_id"],
            ["wallets.id"],
            name="fk_ledger_transactions_source_wallet_id",
        ),
        sa.ForeignKeyConstraint(
            ["destination_wallet_id"],
            ["wallets.id"],
            name="fk_ledger_transactions_destination_wallet_id",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_ledger_transactions_idempotency_key"),
        sa.CheckConstraint("amount > 0", name="ck_ledger_transactions_amount_positive"),
    )
    op.create_index(
        "ix_ledger_transactions_source_wallet_id",
        "ledger_transactions",
        ["source_wallet_id"],
        unique=False,
    )
    op.create_index(
        "ix_ledger_transactions_destination_wallet_id",
        "ledger_transactions",
        ["destination_wallet_id"],
        unique=False,
    )
    op.create_index(
        "ix_ledger_transactions_related_entity",
        "ledger_transactions",
        ["related_entity_type", "related_entity_id"],
        unique=False,
    )

    # Create catalog tables
    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], name="fk_products_provider_id"),
    )
    op.create_index("ix_products_provider_id", "products", ["provider_id"], unique=False)

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(18, 4), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_product_variants_product_id"),
        sa.CheckConstraint("price > 0", name="ck_product_variants_price_positive"),
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"], unique=False)

    # Create inventory tables
    op.create_table(
        "inventory_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("email_ciphertext", sa.Text(), nullable=False),
        sa.Column("password_ciphertext", sa.Text(), nullable=False),
        sa.Column("platform_type", sa.String(50), nullable=False),
        sa.Column("total_slots", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("available_slots", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_inventory_accounts_product_id"),
        sa.CheckConstraint("total_slots >= 1", name="ck_inventory_accounts_total_slots"),
        sa.CheckConstraint(
            "available_slots >= 0 AND available_slots <= total_slots",
            name="ck_inventory_accounts_available_slots",
        ),
    )
    op.create_index(
        "ix_inventory_accounts_product_created",
        "inventory_accounts",
        ["product_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "inventory_slots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("profile_name", sa.String(100), nullable=True),
        sa.Column("pin_ciphertext", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'available'")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["account_id"], ["inventory_accounts.id"], name="fk_inventory_slots_account_id"),
    )
    op.create_index(
        "ix_inventory_slots_account_status",
        "inventory_slots",
        ["account_id", "status"],
        unique=False,
    )

    op.create_table(
        "inventory_licenses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("license_key_ciphertext", sa.Text(), nullable=False),
        sa.Column("activation_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'available'")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_inventory_licenses_product_id"),
    )
    op.create_index(
        "ix_inventory_licenses_product_status",
        "inventory_licenses",
        ["product_id", "status"],
        unique=False,
    )

    # Create commission and affiliation tables
    op.create_table(
        "commission_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("affiliate_rate", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0.00")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "affiliations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("affiliate_id", sa.Uuid(), nullable=False),
        sa.Column("referred_user_id", sa.Uuid(), nullable=False),
        sa.Column("referral_code", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("approval_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["affiliate_id"], ["users.id"], name="fk_affiliations_affiliate_id"),
        sa.ForeignKeyConstraint(["referred_user_id"], ["users.id"], name="fk_affiliations_referred_user_id"),
        sa.UniqueConstraint("referred_user_id", name="uq_affiliations_referred_user_id"),
    )
    op.create_index("ix_affiliations_affiliate_id", "affiliations", ["affiliate_id"], unique=False)

    # Create purchases table
    op.create_table(
        "purchases",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("buyer_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=True),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("variant_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("commission_config_id", sa.Uuid(), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0.00")),
        sa.Column("affiliate_rate", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0.00")),
        sa.Column("provider_earnings", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0.0000")),
        sa.Column("platform_commission", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0.0000")),
        sa.Column("affiliate_commission", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0.0000")),
        sa.Column("affiliate_id", sa.Uuid(), nullable=True),
        sa.Column("buyer_wallet_id", sa.Uuid(), nullable=True),
        sa.Column("provider_wallet_id", sa.Uuid(), nullable=True),
        sa.Column("platform_wallet_id", sa.Uuid(), nullable=True),
        sa.Column("affiliate_wallet_id", sa.Uuid(), nullable=True),
        sa.Column("unit_kind", sa.String(20), nullable=True),
        sa.Column("assigned_account_id", sa.Uuid(), nullable=True),
        sa.Column("assigned_slot_id", sa.Uuid(), nullable=True),
        sa.Column("assigned_license_id", sa.Uuid(), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0.0000")),
        sa.Column("idempotency_key", sa.String(300), nullable=True),
        sa.Column("failure_reason", sa.String(100), nullable=True),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], name="fk_purchases_buyer_id"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], name="fk_purchases_provider_id"),
        sa.ForeignKeyConstraint(["affiliate_id"], ["users.id"], name="fk_purchases_affiliate_id"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_purchases_product_id"),
        sa.ForeignKeyConstraint(
            ["commission_config_id"],
            ["commission_configs.id"],
            name="fk_purchases_commission_config_id",
        ),
        sa.ForeignKeyConstraint(["buyer_wallet_id"], ["wallets.id"], name="fk_purchases_buyer_wallet_id"),
        sa.ForeignKeyConstraint(["provider_wallet_id"], ["wallets.id"], name="fk_purchases_provider_wallet_id"),
        sa.ForeignKeyConstraint(["platform_wallet_id"], ["wallets.id"], name="fk_purchases_platform_wallet_id"),
        sa.ForeignKeyConstraint(["affiliate_wallet_id"], ["wallets.id"], name="fk_purchases_affiliate_wallet_id"),
        sa.ForeignKeyConstraint(
            ["assigned_account_id"],
            ["inventory_accounts.id"],
            name="fk_purchases_assigned_account_id",
        ),
        sa.ForeignKeyConstraint(
            ["assigned_slot_id"],
            ["inventory_slots.id"],
            name="fk_purchases_assigned_slot_id",
        ),
        sa.ForeignKeyConstraint(
            ["assigned_license_id"],
            ["inventory_licenses.id"],
            name="fk_purchases_assigned_license_id",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_purchases_idempotency_key"),
    )
    op.create_index("ix_purchases_buyer_id", "purchases", ["buyer_id"], unique=False)
    op.create_index("ix_purchases_provider_id", "purchases", ["provider_id"], unique=False)

    # Create disputes table
    op.create_table(
        "disputes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("purchase_id", sa.Uuid(), nullable=False),
        sa.Column("buyer_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=True),
        sa.Column("opened_by", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'open'")),
        sa.Column("conciliator_id", sa.Uuid(), nullable=True),
        sa.Column("resolution_type", sa.String(20), nullable=True),
        sa.Column("partial_refund_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolver_id", sa.Uuid(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(18, 4), nullable=True),
        _created_at(),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"], name="fk_disputes_purchase_id"),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], name="fk_disputes_buyer_id"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], name="fk_disputes_provider_id"),
        sa.ForeignKeyConstraint(["conciliator_id"], ["users.id"], name="fk_disputes_conciliator_id"),
        sa.ForeignKeyConstraint(["resolver_id"], ["users.id"], name="fk_disputes_resolver_id"),
        sa.UniqueConstraint("purchase_id", name="uq_disputes_purchase_id"),
    )

    # Create dispute_messages table
    op.create_table(
        "dispute_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("dispute_id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["dispute_id"], ["disputes.id"], name="fk_dispute_messages_dispute_id"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], name="fk_dispute_messages_sender_id"),
    )
    op.create_index(
        "ix_dispute_messages_dispute_created",
        "dispute_messages",
        ["dispute_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables in reverse order."""
    op.drop_index("ix_dispute_messages_dispute_created", table_name="dispute_messages")
    op.drop_table("dispute_messages")
    op.drop_table("disputes")
    op.drop_index("ix_purchases_provider_id", table_name="purchases")
    op.drop_index("ix_purchases_buyer_id", table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("ix_affiliations_affiliate_id", table_name="affiliations")
    op.drop_table("affiliations")
    op.drop_table("commission_configs")
    op.drop_index("ix_inventory_licenses_product_status", table_name="inventory_licenses")
    op.drop_table("inventory_licenses")
    op.drop_index("ix_inventory_slots_account_status", table_name="inventory_slots")
    op.drop_table("inventory_slots")
    op.drop_index("ix_inventory_accounts_product_created", table_name="inventory_accounts")
    op.drop_table("inventory_accounts")
    op.drop_index("ix_product_variants_product_id", table_name="product_variants")
    op.drop_table("product_variants")
    op.drop_index("ix_products_provider_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_ledger_transactions_related_entity", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_destination_wallet_id", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_source_wallet_id", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_table("wallets")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
