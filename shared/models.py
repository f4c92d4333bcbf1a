"""
Domain models for the layer relay.

Design decisions:
- Using Pydantic for validation and serialization
- Layers are frozen after startup; nothing mutates them
- Features are opaque GeoJSON-like objects: only `id` and `properties` are
  interpreted, every other member is passed through untouched
- DomainEvent is a tagged union of UpdateEvent and DeleteEvent
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# schema-qualified or bare SQL identifier, e.g. "sf.linjelager"
_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class EventKind(str, Enum):
    """The two kinds of change a layer can push."""
    UPDATE = "update"
    DELETE = "delete"


# =============================================================================
# Layer
# =============================================================================

class Layer(BaseModel):
    """
    A named collection of features backed by one table and two notify channels.

    Attributes:
        name: Identifier used by clients in the `layer` query parameter
        table: Source table for the initial snapshot. No table, no snapshot.
        id_field: Property to use as feature id. When absent, the id already
            present in the GeoJSON is used (PostGIS < 3.5 does not emit one).
        update_event_name: NOTIFY channel carrying updated features as JSON
        delete_event_name: NOTIFY channel carrying ids of deleted features
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    table: Optional[str] = None
    id_field: Optional[str] = None
    update_event_name: str = Field(..., min_length=1)
    delete_event_name: str = Field(..., min_length=1)

    @field_validator("table")
    @classmethod
    def _check_table(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _TABLE_NAME.match(value):
            raise ValueError(f"not a valid table name: {value!r}")
        return value

    @property
    def event_names(self) -> tuple[str, str]:
        return (self.update_event_name, self.delete_event_name)


# =============================================================================
# Features and domain events
# =============================================================================

class Feature(BaseModel):
    """A GeoJSON-like feature. Unknown members (type, geometry, ...) are kept."""
    model_config = ConfigDict(extra="allow")

    id: Optional[Any] = None
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _null_properties(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_json_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        if data.get("id") is None:
            # older data sources send no id at all; don't invent a null one
            data.pop("id", None)
        return data


class UpdateEvent(BaseModel):
    """A feature was inserted or changed. The feature carries its resolved id."""
    model_config = ConfigDict(frozen=True)

    kind: Literal[EventKind.UPDATE] = EventKind.UPDATE
    layer: str
    feature: Feature

    @property
    def feature_id(self) -> Any:
        return self.feature.id

    def payload(self) -> dict[str, Any]:
        return self.feature.to_json_dict()


class DeleteEvent(BaseModel):
    """A feature was deleted. The id is the raw notification payload."""
    model_config = ConfigDict(frozen=True)

    kind: Literal[EventKind.DELETE] = EventKind.DELETE
    layer: str
    id: str

    @property
    def feature_id(self) -> str:
        return self.id

    def payload(self) -> dict[str, Any]:
        return {"id": self.id}


DomainEvent = Union[UpdateEvent, DeleteEvent]


@dataclass(frozen=True)
class RawNotification:
    """A message as delivered by the store: channel name plus string payload."""
    channel: str
    payload: str
    pid: Optional[int] = None
