"""
Request payload shapes for the multiplication endpoints.

monday.com calls the service either with an action payload
(``{"payload": {"inputFields": {...}}}``) or with an automation trigger
payload whose fields are split between ``inboundFieldValues`` and
``inputFields``. Both normalize to one CalculationRequest.
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ValidationFailure(Exception):
    """Raised when a request is missing identifiers or numeric values."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class PayloadOrigin(str, Enum):
    """Where a multiplication request came from."""
    ACTION = "action"
    AUTOMATION_TRIGGER = "automation_trigger"


class InputFields(BaseModel):
    """Identifier fields shared by both payload shapes."""
    model_config = ConfigDict(extra="ignore")

    board_id: Optional[str] = Field(None, alias="boardId")
    item_id: Optional[str] = Field(None, alias="itemId")
    source_column_id: Optional[str] = Field(None, alias="sourceColumnId")
    factor_column_id: Optional[str] = Field(None, alias="factorColumnId")
    target_column_id: Optional[str] = Field(None, alias="targetColumnId")

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        # monday.com sends ids as numbers or as {"value": ...} dropdown picks
        if isinstance(value, dict):
            value = value.get("value")
        if value is None or value == "":
            return None
        return str(value)


class ActionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    input_fields: InputFields = Field(default_factory=InputFields, alias="inputFields")


class ActionPayload(BaseModel):
    """Direct action call: ``{"payload": {"inputFields": {...}}}``."""
    model_config = ConfigDict(extra="ignore")

    payload: ActionBody = Field(default_factory=ActionBody)


class TriggerBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    inbound_field_values: InputFields = Field(default_factory=InputFields, alias="inboundFieldValues")
    input_fields: InputFields = Field(default_factory=InputFields, alias="inputFields")
    block_kind: Optional[str] = Field(None, alias="blockKind")
    recipe_id: Optional[int] = Field(None, alias="recipeId")
    integration_id: Optional[int] = Field(None, alias="integrationId")


class AutomationTriggerPayload(BaseModel):
    """Automation recipe call carrying ``runtimeMetadata``."""
    model_config = ConfigDict(extra="ignore")

    payload: TriggerBody = Field(default_factory=TriggerBody)
    runtime_metadata: Dict[str, Any] = Field(default_factory=dict, alias="runtimeMetadata")


@dataclass
class CalculationRequest:
    """Canonical identifier set for one multiplication."""
    origin: PayloadOrigin
    board_id: Optional[str] = None
    item_id: Optional[str] = None
    source_column_id: Optional[str] = None
    factor_column_id: Optional[str] = None
    target_column_id: Optional[str] = None

    def identifiers(self) -> Dict[str, Optional[str]]:
        fields = asdict(self)
        fields.pop("origin")
        return fields


def is_trigger_payload(body: Dict[str, Any]) -> bool:
    """Tell an automation trigger payload from an action payload."""
    if "runtimeMetadata" in body:
        return True
    payload = body.get("payload")
    return isinstance(payload, dict) and "inboundFieldValues" in payload


def parse_payload(body: Any) -> Union[ActionPayload, AutomationTriggerPayload]:
    """
    Parse a raw JSON body into one of the two payload models.

    A body without a ``payload`` wrapper (as posted by the item view) is
    read as the action's input fields.

    Raises:
        ValidationFailure: If the body is not an object or has the wrong shape
    """
    if not isinstance(body, dict):
        raise ValidationFailure("Request body must be a JSON object")

    try:
        if is_trigger_payload(body):
            return AutomationTriggerPayload.model_validate(body)
        if "payload" not in body:
            body = {"payload": {"inputFields": body}}
        return ActionPayload.model_validate(body)
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise ValidationFailure("Malformed request payload", fields=fields)


def normalize_payload(body: Any) -> CalculationRequest:
    """
    Reduce either payload shape to a CalculationRequest.

    For trigger payloads, ``inputFields`` take precedence over
    ``inboundFieldValues`` when both carry the same identifier.
    """
    parsed = parse_payload(body)

    if isinstance(parsed, AutomationTriggerPayload):
        inbound = parsed.payload.inbound_field_values.model_dump(exclude_none=True)
        inbound.update(parsed.payload.input_fields.model_dump(exclude_none=True))
        return CalculationRequest(origin=PayloadOrigin.AUTOMATION_TRIGGER, **inbound)

    fields = parsed.payload.input_fields.model_dump(exclude_none=True)
    return CalculationRequest(origin=PayloadOrigin.ACTION, **fields)
