"""add expression indexes for correlation-key and status lookups

Revision ID: 0002_lookup_indexes
Revises: 0001_gateway
Create Date: 2026-10-17
"""

from alembic import op


revision = "0002_lookup_indexes"
down_revision = "0001_gateway"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "CREATE INDEX ix_documents_checkout_request_id "
        "ON documents (collection, (data ->> 'checkoutRequestId'))"
    )
    op.execute("CREATE INDEX ix_documents_status ON documents (collection, (data ->> 'status'), created_at)")


def downgrade() -> None:
    op.drop_index("ix_documents_status", table_name="documents")
    op.drop_index("ix_documents_checkout_request_id", table_name="documents")
