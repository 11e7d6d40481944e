"""
SQLAlchemy model for the calculation log.
"""
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import declarative_base

from .config import DEFAULT_OPERATION

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Calculation(Base):
    """One logged multiplication. Rows are written once and never updated."""
    __tablename__ = "calculations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String, nullable=False, index=True)
    board_id = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    source_column_id = Column(String, nullable=False)
    source_value = Column(JSON(none_as_null=True), nullable=False)
    factor_column_id = Column(String, nullable=False)
    factor_value = Column(JSON(none_as_null=True), nullable=False)
    target_column_id = Column(String, nullable=False)
    result = Column(JSON(none_as_null=True), nullable=False)
    operation = Column(String, nullable=False, default=DEFAULT_OPERATION)
    account_id = Column(String, nullable=True, index=True)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys the API returns."""
        timestamp = self.timestamp
        if timestamp is not None and timestamp.tzinfo is None:
            # SQLite drops the offset; values are always stored as UTC
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return {
            "id": self.id,
            "itemId": self.item_id,
            "boardId": self.board_id,
            "timestamp": timestamp.isoformat() if timestamp else None,
            "sourceColumnId": self.source_column_id,
            "sourceValue": self.source_value,
            "factorColumnId": self.factor_column_id,
            "factorValue": self.factor_value,
            "targetColumnId": self.target_column_id,
            "result": self.result,
            "operation": self.operation,
            "accountId": self.account_id,
        }


# Serve the bounded per-item and per-board history queries
Index("ix_calculations_item_timestamp", Calculation.item_id, Calculation.timestamp.desc())
Index("ix_calculations_board_timestamp", Calculation.board_id, Calculation.timestamp.desc())
