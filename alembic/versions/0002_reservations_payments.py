from alembic import op
import sqlalchemy as sa

revision = "0002_reservations_payments"
down_revision = "0001_users_listings"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "reservations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("buyer_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("requested_kg", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("item_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_reservations_listing_id", "reservations", ["listing_id"])
    op.create_index("ix_reservations_buyer_id", "reservations", ["buyer_id"])
    op.create_index("ix_reservations_seller_id", "reservations", ["seller_id"])

    op.create_table(
        "tracking_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("reservation_id", sa.String(), sa.ForeignKey("reservations.id"), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_automatic", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tracking_events_reservation_id", "tracking_events", ["reservation_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("reservation_id", sa.String(), sa.ForeignKey("reservations.id"), nullable=False, unique=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("buyer_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("base_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("platform_commission", sa.Numeric(14, 2), nullable=False),
        sa.Column("seller_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("provider", sa.String(length=30), nullable=False),
        sa.Column("provider_reference", sa.String(length=200), nullable=True, unique=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(length=30), nullable=False, server_default="requires_payment"),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_transactions_parties", "transactions", ["listing_id", "buyer_id", "seller_id"])


def downgrade():
    op.drop_index("ix_transactions_parties", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_tracking_events_reservation_id", table_name="tracking_events")
    op.drop_table("tracking_events")
    op.drop_index("ix_reservations_seller_id", table_name="reservations")
    op.drop_index("ix_reservations_buyer_id", table_name="reservations")
    op.drop_index("ix_reservations_listing_id", table_name="reservations")
    op.drop_table("reservations")
