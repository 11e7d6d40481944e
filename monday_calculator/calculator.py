"""
Multiplication of two item columns into a third.

Reads the source and factor columns, writes their product to the target
column and logs the calculation. Logging is best-effort: a failed log
append never undoes the column write or fails the request.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict

from . import monday
from .auth import Session
from .monday import MondayAPIError, MondayClient
from .payloads import CalculationRequest, PayloadOrigin, ValidationFailure
from .store import CalculationLogData, CalculationStore

logger = logging.getLogger(__name__)

# camelCase names reported back to callers
REQUIRED_FIELDS = {
    "board_id": "boardId",
    "item_id": "itemId",
    "source_column_id": "sourceColumnId",
    "factor_column_id": "factorColumnId",
}


@dataclass
class MultiplicationResult:
    """Outcome of one successful multiplication."""
    origin: PayloadOrigin
    board_id: str
    item_id: str
    source_column_id: str
    factor_column_id: str
    target_column_id: str
    source_value: float
    factor_value: float
    result: float
    logged: bool

    def to_response(self) -> Dict[str, Any]:
        """Response body; automation triggers only get a success flag."""
        if self.origin == PayloadOrigin.AUTOMATION_TRIGGER:
            return {"success": True}
        return {
            "success": True,
            "result": self.result,
            "boardId": self.board_id,
            "itemId": self.item_id,
            "sourceColumnId": self.source_column_id,
            "factorColumnId": self.factor_column_id,
            "targetColumnId": self.target_column_id,
            "sourceValue": self.source_value,
            "factorValue": self.factor_value,
            "logged": self.logged,
        }


def resolve_identifiers(client: MondayClient, request: CalculationRequest) -> CalculationRequest:
    """
    Fill in identifiers the caller left out.

    A missing item falls back to the first item on the board, a missing
    board is looked up from the item and a missing target column
    defaults to the source column.

    Raises:
        ValidationFailure: If a required identifier is still missing
    """
    if not request.item_id and request.board_id:
        items = monday.get_board_items(client, request.board_id) or []
        if items and items[0].get("id"):
            request.item_id = str(items[0]["id"])
            logger.info(f"No itemId given, using first item {request.item_id} of board {request.board_id}")

    if not request.board_id and request.item_id:
        request.board_id = monday.get_board_id_for_item(client, request.item_id)

    if not request.target_column_id:
        request.target_column_id = request.source_column_id

    missing = [name for attr, name in REQUIRED_FIELDS.items() if not getattr(request, attr)]
    if missing:
        raise ValidationFailure(
            f"boardId, itemId, sourceColumnId and factorColumnId are required (missing: {', '.join(missing)})",
            fields=missing,
        )
    return request


def execute_multiplication(
    client: MondayClient,
    store: CalculationStore,
    session: Session,
    request: CalculationRequest
) -> MultiplicationResult:
    """
    Multiply the source column by the factor column of an item.

    Args:
        client: Request-scoped monday.com client
        store: Calculation log
        session: Verified caller session
        request: Normalized identifiers

    Returns:
        MultiplicationResult with resolved identifiers and the product

    Raises:
        ValidationFailure: If identifiers are missing or a value is not a
            number, or if the product overflows; nothing is written or
            logged in that case
        MondayAPIError: If the result could not be written; nothing is logged
    """
    request = resolve_identifiers(client, request)
    logger.info("Processing multiplication", extra=request.identifiers())

    source_value = monday.get_column_value_as_number(client, request.item_id, request.source_column_id)
    factor_value = monday.get_column_value_as_number(client, request.item_id, request.factor_column_id)

    invalid = [
        name for name, value in (("sourceValue", source_value), ("factorValue", factor_value))
        if value is None
    ]
    if invalid:
        logger.warning(
            f"Invalid number values on item {request.item_id}: {', '.join(invalid)}",
            extra={"source_value": source_value, "factor_value": factor_value},
        )
        raise ValidationFailure(
            "One or both of the input values is not a valid number",
            fields=invalid,
        )

    result = source_value * factor_value
    logger.info(f"Multiplication result for item {request.item_id}: {source_value} * {factor_value} = {result}")

    if not math.isfinite(result):
        raise ValidationFailure("The product is not a finite number", fields=["result"])

    written = monday.change_column_value(
        client,
        request.board_id,
        request.item_id,
        request.target_column_id,
        monday.format_number(result),
    )
    if written is None:
        raise MondayAPIError(
            f"Could not write result to column {request.target_column_id} of item {request.item_id}"
        )

    logged = store.log_calculation(CalculationLogData(
        item_id=request.item_id,
        board_id=request.board_id,
        source_column_id=request.source_column_id,
        source_value=source_value,
        factor_column_id=request.factor_column_id,
        factor_value=factor_value,
        target_column_id=request.target_column_id,
        result=result,
        account_id=session.account_id,
    ))

    return MultiplicationResult(
        origin=request.origin,
        board_id=request.board_id,
        item_id=request.item_id,
        source_column_id=request.source_column_id,
        factor_column_id=request.factor_column_id,
        target_column_id=request.target_column_id,
        source_value=source_value,
        factor_value=factor_value,
        result=result,
        logged=logged,
    )
