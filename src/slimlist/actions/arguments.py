"""
Pydantic base model and field types for action arguments.

Events arrive as untrusted JSON. Each action declares its arguments as an
``ActionArgs`` model; ``from_event`` validates the event, fills in defaults
and turns pydantic's errors into ``ValidationError``.
"""

from __future__ import annotations
from typing import Annotated, Any, Mapping
from urllib.parse import urlparse

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StringConstraints,
    ValidationError as PydanticValidationError,
)

from ..errors import ValidationError


def _check_web_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"expected an http(s) URL, but found {value!r}")
    return value


NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]
BatchId = Annotated[str, StringConstraints(min_length=36, max_length=36)]
Count = Annotated[StrictInt, Field(ge=0)]
WebUrl = Annotated[str, AfterValidator(_check_web_url)]


def describe_errors(error: PydanticValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(messages)


class ActionArgs(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    @classmethod
    def from_event(cls, event: Mapping[str, Any]):
        # Null values fall back to the argument's default
        values = {k: v for k, v in event.items() if v is not None}
        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(describe_errors(e)) from None
