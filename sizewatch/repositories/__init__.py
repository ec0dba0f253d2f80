"""数据访问层."""

from sizewatch.repositories.size_history_repository import SizeHistoryRepository

__all__ = ["SizeHistoryRepository"]
