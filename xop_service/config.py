"""
Handler configuration.

Raw properties are plain strings that may embed variable references,
`{name}` or `{name:default}`. They are resolved against the runtime
variable store first and then validated into a typed XopConfig.
"""

import re
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .content_types import (
    DEFAULT_ATTACHMENT_CONTENT_TYPES,
    DEFAULT_XML_CONTENT_TYPES,
    ContentTypeAllowlist,
)
from .errors import XopError

VARIABLE_REFERENCE_RE = re.compile(r"\{([^{} :][^{} ]*?)\}")

Lookup = Callable[[str], Optional[Any]]


class XopAction(str, Enum):
    EDIT_1 = "EDIT_1"
    EXTRACT_SOAP = "EXTRACT_SOAP"
    TRANSFORM_TO_EMBEDDED = "TRANSFORM_TO_EMBEDDED"

    @classmethod
    def find_by_name(cls, name: str) -> "XopAction":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise XopError("specify a valid action.")


def resolve_variable_references(spec: str, lookup: Optional[Lookup]) -> str:
    """
    Replace each {name} or {name:default} reference. A missing variable
    falls back to the inline default, or to the empty string.
    """

    def _replace(m):
        name, _, default = m.group(1).partition(":")
        value = lookup(name) if lookup is not None else None
        if value is not None:
            return str(value)
        return default

    return VARIABLE_REFERENCE_RE.sub(_replace, spec)


def resolve_properties(properties: Mapping[Any, Any], lookup: Optional[Lookup] = None) -> Dict[str, str]:
    """Non-string entries and blank values are dropped before interpolation."""
    resolved: Dict[str, str] = {}
    for key, value in properties.items():
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        value = value.strip()
        if not value:
            continue
        resolved[key] = resolve_variable_references(value, lookup)
    return resolved


def parse_debug(value: Any) -> bool:
    """Only the string "true", in any case, turns debugging on."""
    if isinstance(value, bool):
        return value
    return value is not None and str(value).strip().lower() == "true"


class XopConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True, frozen=True)

    action: XopAction = XopAction.EDIT_1
    source: str = "message"
    xml_content_types: ContentTypeAllowlist = Field(
        default_factory=lambda: ContentTypeAllowlist(DEFAULT_XML_CONTENT_TYPES),
        alias="part1-ctypes",
    )
    attachment_content_types: ContentTypeAllowlist = Field(
        default_factory=lambda: ContentTypeAllowlist(DEFAULT_ATTACHMENT_CONTENT_TYPES),
        alias="part2-ctypes",
    )
    debug: bool = False

    @field_validator("action", mode="before")
    def action_by_name(cls, v):
        if isinstance(v, XopAction):
            return v
        # a reference that resolves to nothing is not a valid action
        return XopAction.find_by_name(str(v))

    @field_validator("source", mode="before")
    def source_or_default(cls, v):
        if v is None or not str(v).strip():
            return "message"
        return str(v).strip()

    @field_validator("xml_content_types", mode="before")
    def xml_types(cls, v):
        if isinstance(v, ContentTypeAllowlist):
            return v
        return ContentTypeAllowlist.parse(v, DEFAULT_XML_CONTENT_TYPES)

    @field_validator("attachment_content_types", mode="before")
    def attachment_types(cls, v):
        if isinstance(v, ContentTypeAllowlist):
            return v
        return ContentTypeAllowlist.parse(v, DEFAULT_ATTACHMENT_CONTENT_TYPES)

    @field_validator("debug", mode="before")
    def debug_flag(cls, v):
        return parse_debug(v)

    @classmethod
    def from_properties(cls, properties: Mapping[Any, Any], lookup: Optional[Lookup] = None) -> "XopConfig":
        return cls.model_validate(resolve_properties(properties, lookup))
