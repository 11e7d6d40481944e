"""
monday.com GraphQL API integration.

Column reads and writes, item/board lookups and webhook subscription
management. Every accessor swallows remote failures and returns None
(or False) so callers treat a failure as "value unavailable".
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

import requests

from .config import (
    MONDAY_API_URL, MONDAY_API_VERSION, MONDAY_API_TIMEOUT,
    NUMERIC_COLUMN_TYPES,
)

logger = logging.getLogger(__name__)

_FLOAT_PREFIX = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


class MondayAPIError(Exception):
    """Raised when a monday.com API call fails."""
    pass


class MondayClient:
    """GraphQL client bound to a single short-lived token."""

    def __init__(self, token: str, api_version: str = MONDAY_API_VERSION):
        self.token = token
        self.api_version = api_version

    def api(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a GraphQL query or mutation.

        Args:
            query: GraphQL document
            variables: Variables for the document

        Returns:
            Decoded JSON response body

        Raises:
            MondayAPIError: If the request fails or the API reports errors
        """
        payload = {"query": query, "variables": variables or {}}
        headers = {
            "Authorization": self.token,
            "API-Version": self.api_version,
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(
                MONDAY_API_URL, json=payload, headers=headers, timeout=MONDAY_API_TIMEOUT
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.ConnectionError:
            raise MondayAPIError(f"Cannot connect to monday.com at {MONDAY_API_URL}")
        except requests.exceptions.Timeout:
            raise MondayAPIError("monday.com request timed out")
        except requests.exceptions.RequestException as e:
            raise MondayAPIError(f"monday.com request failed: {e}")
        except ValueError as e:
            raise MondayAPIError(f"monday.com returned a non-JSON body: {e}")

        if not isinstance(result, dict):
            raise MondayAPIError(f"Unexpected response from monday.com: {result}")

        if result.get("errors"):
            messages = [err.get("message", str(err)) for err in result["errors"] if isinstance(err, dict)]
            raise MondayAPIError(f"monday.com returned errors: {messages or result['errors']}")

        return result


def create_client(token: str, api_version: str = MONDAY_API_VERSION) -> MondayClient:
    """
    Build a client for one request.

    Clients are never shared: each one carries the caller's own
    short-lived token.
    """
    return MondayClient(token, api_version=api_version)


def _dig(data: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[key] if isinstance(key, int) else data.get(key)
        if data is None:
            return None
    return data


def parse_float(value: Any) -> Optional[float]:
    """
    Parse a number the way lenient JavaScript parsing does.

    Leading whitespace is ignored and the longest numeric prefix wins,
    so "42 kg" parses as 42.0. Booleans, non-finite numbers and anything
    without a numeric prefix give None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    match = _FLOAT_PREFIX.match(value.lstrip())
    if not match:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None


def parse_column_number(column: Dict[str, Any]) -> Optional[float]:
    """
    Extract a number from a column snapshot.

    Strategies, in order:
        1. the human-readable ``text``
        2. ``value`` decoded as JSON: an object's ``value`` or ``number``
           property, a bare JSON number, or a JSON string
        3. ``value`` parsed directly, only when it is not valid JSON

    Args:
        column: Column snapshot with optional ``text`` and ``value`` keys

    Returns:
        The parsed number, or None if every strategy fails
    """
    text = column.get("text")
    if text:
        number = parse_float(text)
        if number is not None:
            return number

    raw = column.get("value")
    if not raw:
        return None

    try:
        decoded = json.loads(raw) if isinstance(raw, str) else raw
    except ValueError:
        return parse_float(raw)

    if isinstance(decoded, dict):
        if "value" in decoded:
            return parse_float(decoded["value"])
        if "number" in decoded:
            return parse_float(decoded["number"])
        return None
    if isinstance(decoded, (int, float)) and not isinstance(decoded, bool):
        return parse_float(decoded)
    if isinstance(decoded, str):
        return parse_float(decoded)
    return None


def format_number(number: float) -> str:
    """Render a number for a column write, dropping a trailing ``.0``."""
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def get_column_value(client: MondayClient, item_id: str, column_id: str) -> Optional[str]:
    """
    Get the raw stored value of one column.

    Returns:
        The column's value string, or None if the item, column or value
        is missing or the call fails
    """
    query = """query($itemId: [ID!], $columnId: [String!]) {
        items (ids: $itemId) {
          column_values(ids: $columnId) {
            value
          }
        }
      }"""
    try:
        response = client.api(query, {"itemId": item_id, "columnId": column_id})
    except MondayAPIError as e:
        logger.error(f"Failed to read column {column_id} of item {item_id}: {e}")
        return None

    return _dig(response, "data", "items", 0, "column_values", 0, "value") or None


def get_column_value_as_number(client: MondayClient, item_id: str, column_id: str) -> Optional[float]:
    """
    Read one column and parse it as a number.

    See parse_column_number for the parsing order.

    Returns:
        The number, or None if unavailable or unparseable
    """
    query = """query($itemId: [ID!], $columnId: [String!]) {
        items (ids: $itemId) {
          column_values(ids: $columnId) {
            value
            type
            text
          }
        }
      }"""
    try:
        response = client.api(query, {"itemId": item_id, "columnId": column_id})
    except MondayAPIError as e:
        logger.error(f"Failed to read column {column_id} of item {item_id}: {e}")
        return None

    column = _dig(response, "data", "items", 0, "column_values", 0)
    if not isinstance(column, dict):
        logger.warning(f"Column {column_id} not found on item {item_id}")
        return None

    number = parse_column_number(column)
    if number is None:
        logger.warning(
            f"Could not parse number from column {column_id} of item {item_id}",
            extra={"column_type": column.get("type"), "column_text": column.get("text")},
        )
    return number


def get_column_info(client: MondayClient, board_id: str, column_id: str) -> Optional[Dict[str, Any]]:
    """Get a column's id, title, type and settings, or None."""
    query = """query($boardId: ID!, $columnId: String!) {
      boards(ids: [$boardId]) {
        columns(ids: [$columnId]) {
          id
          title
          type
          settings_str
        }
      }
    }"""
    try:
        response = client.api(query, {"boardId": board_id, "columnId": column_id})
    except MondayAPIError as e:
        logger.error(f"Failed to fetch column info for {column_id} on board {board_id}: {e}")
        return None

    column = _dig(response, "data", "boards", 0, "columns", 0)
    return column if isinstance(column, dict) else None


def format_column_value(value: str, column_type: Optional[str]) -> str:
    """
    Shape a value for the given column type.

    Numeric columns take {"value": "<value>"} unless the value is already
    JSON. Everything else is written verbatim.
    """
    if column_type and column_type.lower() in NUMERIC_COLUMN_TYPES:
        try:
            json.loads(value)
            return value
        except ValueError:
            return json.dumps({"value": str(value)})
    return value


def change_column_value(
    client: MondayClient,
    board_id: str,
    item_id: str,
    column_id: str,
    value: str
) -> Optional[Dict[str, Any]]:
    """
    Write a value to an item's column.

    The column's type is fetched first so numeric columns receive the
    JSON-wrapped form they expect.

    Args:
        client: Request-scoped monday.com client
        board_id: Board holding the item
        item_id: Item to update
        column_id: Column to write
        value: Value as a string

    Returns:
        The mutation response, or None if the write failed
    """
    column_info = get_column_info(client, board_id, column_id)
    formatted_value = format_column_value(value, (column_info or {}).get("type"))

    query = """mutation change_column_value($boardId: ID!, $itemId: ID!, $columnId: String!, $value: JSON!) {
        change_column_value(board_id: $boardId, item_id: $itemId, column_id: $columnId, value: $value) {
          id
        }
      }"""
    variables = {
        "boardId": board_id,
        "itemId": item_id,
        "columnId": column_id,
        "value": formatted_value,
    }
    try:
        return client.api(query, variables)
    except MondayAPIError as e:
        logger.error(f"Failed to write column {column_id} of item {item_id}: {e}")
        return None


def get_board_id_for_item(client: MondayClient, item_id: str) -> Optional[str]:
    """Resolve the board an item lives on, or None."""
    query = """query($itemId: [ID!]) {
      items(ids: $itemId) {
        id
        board {
          id
        }
      }
    }"""
    try:
        response = client.api(query, {"itemId": item_id})
    except MondayAPIError as e:
        logger.error(f"Failed to resolve board for item {item_id}: {e}")
        return None

    board_id = _dig(response, "data", "items", 0, "board", "id")
    return str(board_id) if board_id else None


def get_all_column_values_for_item(client: MondayClient, item_id: str) -> Optional[List[Dict[str, Any]]]:
    """Get every column snapshot (id, title, text, type, value) of an item."""
    query = """query($itemId: [ID!]) {
      items(ids: $itemId) {
        column_values {
          id
          column {
            title
          }
          text
          type
          value
        }
      }
    }"""
    try:
        response = client.api(query, {"itemId": item_id})
    except MondayAPIError as e:
        logger.error(f"Failed to read columns of item {item_id}: {e}")
        return None

    columns = _dig(response, "data", "items", 0, "column_values")
    return columns if isinstance(columns, list) else None


def get_board_items(client: MondayClient, board_id: str) -> Optional[List[Dict[str, Any]]]:
    """Get the items listed on a board, in board order."""
    query = """query($boardId: [ID!]) {
      boards(ids: $boardId) {
        items_page {
          items {
            id
            name
          }
        }
      }
    }"""
    try:
        response = client.api(query, {"boardId": board_id})
    except MondayAPIError as e:
        logger.error(f"Failed to list items of board {board_id}: {e}")
        return None

    items = _dig(response, "data", "boards", 0, "items_page", "items")
    return items if isinstance(items, list) else None


def create_subscription(
    client: MondayClient,
    webhook_url: str,
    event: str,
    board_id: str,
    column_id: Optional[str] = None
) -> Optional[str]:
    """
    Register a webhook on a board.

    Returns:
        The new webhook id, or None on failure
    """
    config: Dict[str, Any] = {}
    if column_id:
        config["columnId"] = column_id

    query = """mutation createSubscription($boardId: ID!, $webhookUrl: String!, $event: WebhookEventType!, $config: JSON) {
      create_webhook(board_id: $boardId, url: $webhookUrl, event: $event, config: $config) {
        id
        board_id
      }
    }"""
    variables = {
        "boardId": board_id,
        "webhookUrl": webhook_url,
        "event": event,
        "config": json.dumps(config) if config else None,
    }
    try:
        response = client.api(query, variables)
    except MondayAPIError as e:
        logger.error(f"Failed to create {event} subscription on board {board_id}: {e}")
        return None

    webhook_id = _dig(response, "data", "create_webhook", "id")
    if not webhook_id:
        logger.error(f"Unexpected create_webhook response: {response}")
        return None
    return str(webhook_id)


def delete_subscription(client: MondayClient, subscription_id: str) -> bool:
    """
    Delete a webhook.

    Returns:
        True if monday.com confirmed the deletion, False otherwise
    """
    try:
        parsed_id = int(subscription_id)
    except (TypeError, ValueError):
        logger.error(f"Invalid subscription ID format: {subscription_id}")
        return False

    query = """mutation deleteWebhook($id: ID!) {
      delete_webhook(id: $id) {
        id
      }
    }"""
    try:
        response = client.api(query, {"id": parsed_id})
    except MondayAPIError as e:
        logger.error(f"Failed to delete subscription {subscription_id}: {e}")
        return False

    if _dig(response, "data", "delete_webhook", "id"):
        return True
    logger.error(f"Unexpected delete_webhook response: {response}")
    return False


def list_subscriptions(client: MondayClient, board_id: str) -> Optional[List[Dict[str, Any]]]:
    """List the webhooks registered on a board, or None on failure."""
    query = """query($boardId: ID!) {
      webhooks(board_id: $boardId) {
        id
        board_id
        event
        config
      }
    }"""
    try:
        response = client.api(query, {"boardId": board_id})
    except MondayAPIError as e:
        logger.error(f"Failed to list subscriptions for board {board_id}: {e}")
        return None

    webhooks = _dig(response, "data", "webhooks")
    return webhooks if isinstance(webhooks, list) else None
