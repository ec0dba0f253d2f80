"""数据模型模块.

- SizeSnapshot: 数据库容量审计快照
"""

from sizewatch.models.size_snapshot import SizeSnapshot

__all__ = ["SizeSnapshot"]
