"""Reference values for audited entities and the parties acting on them.

EntityRef is the (entity_id, entity_type) pointer stored on every audit record.
It carries no foreign key; entity_type is a registry tag resolved through
EntityTypeRegistry.

A Party (actor or tenant) is either a reference to a registered entity or a
plain display name, never both:

    ActorByReference(party_id="42", party_type="User")
    ActorByName(name="nightly-import")
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

if TYPE_CHECKING:
    from aumos_audit_trail.core.registry import EntityTypeRegistry


def _coerce_id(value: Any) -> Any:
    if isinstance(value, (int, uuid.UUID)) and not isinstance(value, bool):
        return str(value)
    return value


class EntityRef(BaseModel):
    """Polymorphic pointer to an audited record.

    Attributes:
        entity_id: Identifier of the record, stored as a string.
        entity_type: Stable registry tag of the record's type.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str = Field(..., min_length=1, description="Identifier of the audited record")
    entity_type: str = Field(..., min_length=1, description="Registry tag of the record type")

    @field_validator("entity_id", mode="before")
    @classmethod
    def normalize_entity_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


class ActorByReference(BaseModel):
    """A party identified by a registered entity reference."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["reference"] = "reference"
    party_id: str = Field(..., min_length=1)
    party_type: str = Field(..., min_length=1)

    @field_validator("party_id", mode="before")
    @classmethod
    def normalize_party_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    def as_entity_ref(self) -> EntityRef:
        return EntityRef(entity_id=self.party_id, entity_type=self.party_type)

    def display(self) -> str:
        return f"{self.party_type}:{self.party_id}"


class ActorByName(BaseModel):
    """A party identified only by a display name."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["name"] = "name"
    name: str = Field(..., min_length=1)

    def display(self) -> str:
        return self.name


Party = Annotated[Union[ActorByReference, ActorByName], Field(discriminator="kind")]

_party_adapter: TypeAdapter[ActorByReference | ActorByName] = TypeAdapter(Party)


def parse_party(data: Any) -> ActorByReference | ActorByName:
    """Validate a serialized party (dict or model) into its variant."""
    return _party_adapter.validate_python(data)


def to_party(
    value: Any,
    registry: EntityTypeRegistry | None = None,
) -> ActorByReference | ActorByName | None:
    """Coerce a caller-supplied actor or tenant into a Party.

    Accepts an existing Party, an EntityRef, a plain string (display name) or,
    when a registry is given, an instance of a registered model class.

    Args:
        value: The value to coerce. None passes through.
        registry: Optional registry used to reference host model instances.

    Returns:
        The Party variant, or None when value is None.

    Raises:
        TypeError: If the value cannot be represented as a Party.
    """
    if value is None:
        return None
    if isinstance(value, (ActorByReference, ActorByName)):
        return value
    if isinstance(value, EntityRef):
        return ActorByReference(party_id=value.entity_id, party_type=value.entity_type)
    if isinstance(value, str):
        return ActorByName(name=value)
    if registry is not None:
        ref = registry.reference_for(value)
        if ref is not None:
            return ActorByReference(party_id=ref.entity_id, party_type=ref.entity_type)
    raise TypeError(f"Cannot use {type(value).__name__} as an audit actor or tenant")
