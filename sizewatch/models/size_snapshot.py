"""数据库容量快照模型.

审计表 `Auditoria_TamanoBD`: 每个服务器、标签与日期最多一条记录,只追加不修改.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Column, Date, Index, Integer, Numeric, String, UniqueConstraint

from sizewatch import db
from sizewatch.constants import SIZE_QUANTUM


def quantize_size_mb(value: Decimal) -> Decimal:
    """按审计表精度(两位小数,四舍五入)规整容量."""
    return Decimal(value).quantize(SIZE_QUANTUM, rounding=ROUND_HALF_UP)


class SizeSnapshot(db.Model):
    """数据库容量快照模型.

    Attributes:
        id: 代理主键.
        captured_date: 采集日期(按日比较,不含时间).
        server_alias: 服务器显示名称(配置了别名时为别名).
        label: 数据库名加分段后缀,如 `Fichas_Data`.
        size_mb: 容量(MB,两位小数).

    """

    __tablename__ = "Auditoria_TamanoBD"

    id = Column("Id", Integer, primary_key=True, autoincrement=True)
    captured_date = Column("FechaRegistro", Date, nullable=False, comment="采集日期")
    server_alias = Column("Servidor", String(255), nullable=False, comment="服务器显示名称")
    label = Column("NombreBD", String(255), nullable=False, comment="数据库名称与分段标签")
    size_mb = Column("TamanoMB", Numeric(18, 2, asdecimal=True), nullable=False, comment="容量(MB)")

    __table_args__ = (
        UniqueConstraint(
            "Servidor",
            "NombreBD",
            "FechaRegistro",
            name="uq_auditoria_servidor_nombre_fecha",
        ),
        # 基线查询: 按服务器+标签取日期最大的一条
        Index(
            "ix_auditoria_servidor_nombre_fecha",
            "Servidor",
            "NombreBD",
            "FechaRegistro",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SizeSnapshot(id={self.id}, server='{self.server_alias}', "
            f"label='{self.label}', size_mb={self.size_mb}, date={self.captured_date})>"
        )

    def to_dict(self) -> dict:
        """序列化快照记录,容量以字符串输出以保留精度."""
        return {
            "id": self.id,
            "captured_date": self.captured_date.isoformat() if self.captured_date is not None else None,
            "server_alias": self.server_alias,
            "label": self.label,
            "size_mb": str(self.size_mb) if self.size_mb is not None else None,
        }
