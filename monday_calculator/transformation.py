"""
Text transformation action.

Reads a text column of an item, changes its case and writes the result
to a target column. The available transformations are also served as
the remote options list of the action's dropdown field.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import monday
from .monday import MondayAPIError, MondayClient
from .payloads import ValidationFailure

logger = logging.getLogger(__name__)


class TransformationType(str, Enum):
    TO_UPPER_CASE = "TO_UPPER_CASE"
    TO_LOWER_CASE = "TO_LOWER_CASE"


TRANSFORMATION_TYPES: List[Dict[str, str]] = [
    {"title": "to upper case", "value": TransformationType.TO_UPPER_CASE.value},
    {"title": "to lower case", "value": TransformationType.TO_LOWER_CASE.value},
]


class TransformationFields(BaseModel):
    """``inputFields`` of a text transformation action."""
    model_config = ConfigDict(extra="ignore")

    board_id: Optional[str] = Field(None, alias="boardId")
    item_id: Optional[str] = Field(None, alias="itemId")
    source_column_id: Optional[str] = Field(None, alias="sourceColumnId")
    target_column_id: Optional[str] = Field(None, alias="targetColumnId")
    transformation_type: Optional[str] = Field(None, alias="transformationType")

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        # dropdown picks arrive as {"title": ..., "value": ...}
        if isinstance(value, dict):
            value = value.get("value")
        if value is None or value == "":
            return None
        return str(value)


class TransformationBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    input_fields: TransformationFields = Field(default_factory=TransformationFields, alias="inputFields")


class TransformationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payload: TransformationBody = Field(default_factory=TransformationBody)


REQUIRED_FIELDS = {
    "board_id": "boardId",
    "item_id": "itemId",
    "source_column_id": "sourceColumnId",
    "target_column_id": "targetColumnId",
}


@dataclass
class TransformationResult:
    item_id: str
    target_column_id: str
    source_text: Optional[str]
    transformed_text: Optional[str]

    @property
    def written(self) -> bool:
        return self.transformed_text is not None


def parse_transformation_payload(body: Any) -> TransformationFields:
    """
    Validate an action body and return its input fields.

    Raises:
        ValidationFailure: If the body is malformed or an identifier is missing
    """
    if not isinstance(body, dict):
        raise ValidationFailure("Request body must be a JSON object", fields=["payload"])

    try:
        fields = TransformationPayload.model_validate(body).payload.input_fields
    except ValidationError as e:
        raise ValidationFailure(
            "Malformed transformation payload",
            fields=[".".join(str(part) for part in err["loc"]) for err in e.errors()],
        ) from e

    missing = [alias for name, alias in REQUIRED_FIELDS.items() if not getattr(fields, name)]
    if missing:
        raise ValidationFailure(f"Missing required fields: {', '.join(missing)}", fields=missing)
    return fields


def transform_text(value: str, transformation_type: Optional[str] = None) -> str:
    """Change the case of ``value``. Unknown or missing types upper-case."""
    if transformation_type == TransformationType.TO_LOWER_CASE.value:
        return value.lower()
    return value.upper()


def decode_text_value(raw: Optional[str]) -> Optional[str]:
    """
    Unwrap a stored text column value.

    monday.com stores text columns as a JSON string literal; anything that
    does not decode to a string is used as-is.
    """
    if raw is None:
        return None
    try:
        decoded = json.loads(raw)
    except ValueError:
        return raw
    return decoded if isinstance(decoded, str) else raw


def execute_transformation(client: MondayClient, fields: TransformationFields) -> TransformationResult:
    """
    Transform the source column text and write it to the target column.

    An empty source column is not an error: nothing is written.

    Raises:
        MondayAPIError: If the target column write fails
    """
    text = decode_text_value(monday.get_column_value(client, fields.item_id, fields.source_column_id))
    if not text:
        logger.info(f"Column {fields.source_column_id} of item {fields.item_id} is empty, nothing to transform")
        return TransformationResult(fields.item_id, fields.target_column_id, text, None)

    transformed = transform_text(text, fields.transformation_type)
    written = monday.change_column_value(
        client, fields.board_id, fields.item_id, fields.target_column_id, json.dumps(transformed)
    )
    if written is None:
        raise MondayAPIError(
            f"Failed to write column {fields.target_column_id} of item {fields.item_id}"
        )
    return TransformationResult(fields.item_id, fields.target_column_id, text, transformed)
