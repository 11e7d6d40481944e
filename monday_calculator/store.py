"""
Calculation log storage using SQLAlchemy.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .config import (
    DATABASE_URL, DEFAULT_OPERATION,
    ITEM_HISTORY_LIMIT, BOARD_HISTORY_LIMIT, ALL_HISTORY_LIMIT,
)
from .models import Base, Calculation, utcnow

logger = logging.getLogger(__name__)

Number = Union[int, float, str]


@dataclass
class CalculationLogData:
    """Fields of a calculation to log. The timestamp is added on write."""
    item_id: str
    board_id: str
    source_column_id: str
    source_value: Number
    factor_column_id: str
    factor_value: Number
    target_column_id: str
    result: Number
    operation: str = DEFAULT_OPERATION
    account_id: Optional[str] = None


class CalculationStore:
    """Append-only log of calculations with history queries."""

    def __init__(self, database_url: str = DATABASE_URL):
        """
        Initialize the store and create the table if needed.

        Args:
            database_url: SQLAlchemy database URL
        """
        self.database_url = database_url

        engine_kwargs: Dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same memory db
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

        logger.info(f"Initialized calculation store with {self.count()} records")

    def count(self) -> int:
        """Number of logged calculations, or 0 if the store is unreachable."""
        try:
            with self.session_factory() as session:
                return session.scalar(select(func.count()).select_from(Calculation)) or 0
        except SQLAlchemyError as e:
            logger.error(f"Error counting calculations: {e}")
            return 0

    def log_calculation(self, data: CalculationLogData) -> bool:
        """
        Persist one calculation, stamped with the current time.

        Args:
            data: Calculation fields

        Returns:
            True if saved, False if the write failed
        """
        try:
            with self.session_factory() as session:
                session.add(Calculation(timestamp=utcnow(), **asdict(data)))
                session.commit()
            logger.info(f"Saved calculation for itemId: {data.item_id}")
            return True
        except Exception:
            logger.exception(
                "Error logging calculation to database",
                extra={"item_id": data.item_id, "board_id": data.board_id},
            )
            return False

    def get_history_for_item(self, item_id: str, limit: int = ITEM_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        """Newest-first calculations for one item, at most ``limit``."""
        try:
            return self._find(Calculation.item_id == item_id, limit=limit)
        except Exception:
            logger.exception(f"Error retrieving calculation history for item {item_id}")
            return []

    def get_history_for_board(self, board_id: str, limit: int = BOARD_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        """Newest-first calculations for one board, at most ``limit``."""
        try:
            return self._find(Calculation.board_id == board_id, limit=limit)
        except Exception:
            logger.exception(f"Error retrieving calculation history for board {board_id}")
            return []

    def get_all_history(
        self,
        limit: int = ALL_HISTORY_LIMIT,
        page: int = 1,
        account_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Page through all calculations, newest first.

        Args:
            limit: Page size
            page: 1-based page number
            account_id: Restrict to one account; all accounts when None

        Returns:
            Dict with ``data``, ``total`` (matching records ignoring paging),
            ``page`` and ``limit``
        """
        skip = (page - 1) * limit
        filters = [Calculation.account_id == account_id] if account_id else []

        try:
            data = self._find(*filters, limit=limit, offset=skip)
            with self.session_factory() as session:
                total = session.scalar(
                    select(func.count()).select_from(Calculation).where(*filters)
                ) or 0
        except Exception:
            logger.exception("Error retrieving all calculation history")
            return {"data": [], "total": 0, "page": page, "limit": limit}

        return {"data": data, "total": total, "page": page, "limit": limit}

    def _find(self, *filters, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        statement = (
            select(Calculation)
            .where(*filters)
            .order_by(Calculation.timestamp.desc(), Calculation.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with self.session_factory() as session:
            return [row.to_dict() for row in session.scalars(statement)]


# Global calculation store instance
_calculation_store: Optional[CalculationStore] = None


def get_calculation_store() -> CalculationStore:
    """Get or create the global calculation store instance."""
    global _calculation_store
    if _calculation_store is None:
        _calculation_store = CalculationStore()
    return _calculation_store
