"""Problem statement portal schema: organisation, problem statements, submissions

Revision ID: a1p2s3c4r501
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1p2s3c4r501"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "institutions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "departments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("head", sa.String(255)),
        sa.Column("innovation_lab", sa.String(255)),
        sa.Column("location", sa.String(255)),
        sa.Column("institution_id", sa.String(36), sa.ForeignKey("institutions.id", ondelete="SET NULL"), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True, comment="Identity provider user id"),
        sa.Column("name", sa.String(255)),
        sa.Column("email", sa.String(255), index=True),
        sa.Column("role", sa.String(50), server_default="department_admin"),
        sa.Column("phone", sa.String(50)),
        sa.Column("avatar_url", sa.String(500)),
        sa.Column("faculty_id", sa.String(100)),
        sa.Column("department_id", sa.String(36), sa.ForeignKey("departments.id", ondelete="SET NULL"), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "submission_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("department_id", sa.String(36), sa.ForeignKey("departments.id", ondelete="SET NULL"), index=True),
        sa.Column("submitted_by", sa.String(36), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="submitted"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "problem_statements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("problem_statement_id", sa.String(30), nullable=False, unique=True, index=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("category", sa.String(100), nullable=False, server_default=""),
        sa.Column("theme", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("detailed_description", sa.Text()),
        sa.Column("department", sa.String(255), comment="Department name at creation time"),
        sa.Column("department_id", sa.String(36), sa.ForeignKey("departments.id", ondelete="SET NULL"), index=True),
        sa.Column("created_by", sa.String(36), index=True),
        sa.Column("faculty_owner", sa.String(255)),
        sa.Column("assigned_spoc", sa.String(255)),
        sa.Column("status", sa.String(30), server_default="draft", index=True),
        sa.Column("submission_batch_id", sa.String(36),
                  sa.ForeignKey("submission_batches.id", ondelete="SET NULL"), index=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        sa.Column("last_updated", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ps_department_ordering", "problem_statements",
                    ["department_id", "last_updated", "created_at"])

    op.create_table(
        "problem_statement_attachments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("problem_statement_id", sa.String(36), sa.ForeignKey("problem_statements.id"),
                  nullable=False, index=True),
        sa.Column("uploaded_by", sa.String(36)),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("object_path", sa.String(1000), nullable=False),
        sa.Column("mime_type", sa.String(150)),
        sa.Column("file_size", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "problem_statement_messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("problem_statement_id", sa.String(36), sa.ForeignKey("problem_statements.id"),
                  nullable=False, index=True),
        sa.Column("sender_id", sa.String(36)),
        sa.Column("sender_role", sa.String(50)),
        sa.Column("recipient_role", sa.String(50), index=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "problem_statement_reviews",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("problem_statement_id", sa.String(36), sa.ForeignKey("problem_statements.id"),
                  nullable=False, index=True),
        sa.Column("reviewer_id", sa.String(36)),
        sa.Column("decision", sa.String(30), comment="approved / revision_needed"),
        sa.Column("comments", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "problem_statement_alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("problem_statement_id", sa.String(36), sa.ForeignKey("problem_statements.id"), index=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="reminder"),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "submission_batch_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("batch_id", sa.String(36), sa.ForeignKey("submission_batches.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("problem_statement_id", sa.String(36), sa.ForeignKey("problem_statements.id"),
                  nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("batch_id", "problem_statement_id", name="uq_batch_item"),
    )


def downgrade():
    op.drop_table("submission_batch_items")
    op.drop_table("problem_statement_alerts")
    op.drop_table("problem_statement_reviews")
    op.drop_table("problem_statement_messages")
    op.drop_table("problem_statement_attachments")
    op.drop_index("ix_ps_department_ordering", table_name="problem_statements")
    op.drop_table("problem_statements")
    op.drop_table("submission_batches")
    op.drop_table("profiles")
    op.drop_table("departments")
    op.drop_table("institutions")
