"""Create Auditoria_TamanoBD size snapshot table.

Revision ID: 20260301090000
Revises:
Create Date: 2026-03-01

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "20260301090000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Execute upgrade migration."""
    op.create_table(
        "Auditoria_TamanoBD",
        sa.Column("Id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("FechaRegistro", sa.Date(), nullable=False, comment="采集日期"),
        sa.Column("Servidor", sa.String(length=255), nullable=False, comment="服务器显示名称"),
        sa.Column("NombreBD", sa.String(length=255), nullable=False, comment="数据库名称与分段标签"),
        sa.Column("TamanoMB", sa.Numeric(precision=18, scale=2), nullable=False, comment="容量(MB)"),
        sa.UniqueConstraint(
            "Servidor",
            "NombreBD",
            "FechaRegistro",
            name="uq_auditoria_servidor_nombre_fecha",
        ),
    )
    op.create_index(
        "ix_auditoria_servidor_nombre_fecha",
        "Auditoria_TamanoBD",
        ["Servidor", "NombreBD", "FechaRegistro"],
    )


def downgrade() -> None:
    """Execute downgrade migration."""
    op.drop_index("ix_auditoria_servidor_nombre_fecha", table_name="Auditoria_TamanoBD")
    op.drop_table("Auditoria_TamanoBD")
