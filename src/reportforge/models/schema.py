"""Pydantic models for schema definitions.

the schema is the static catalog of objects, their fields and how objects relate
to each other. it's loaded once at startup and everything downstream treats it
as read-only - filters, blocks and grouping all branch on the declared field type
rather than sniffing values at runtime.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FieldType(str, Enum):
    """Declared field types.

    id fields are kept separate from string so they never show up as group-by
    candidates - grouping by a primary key is never what anyone wants.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ID = "id"


class TimeGranularity(str, Enum):
    """Supported bucket sizes for time series."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class RelationshipType(str, Enum):
    """Cardinality of a relationship. informational only - we never do real joins."""

    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"


class FieldRef(BaseModel):
    """A fully qualified pointer to a field, e.g. payments.amount.

    frozen so refs are hashable and compare structurally - two refs built from
    different yaml files still match if they point at the same field.
    """

    model_config = ConfigDict(frozen=True)

    object: str
    field: str

    @model_validator(mode="before")
    @classmethod
    def accept_dotted(cls, data: Any) -> Any:
        # yaml definitions write refs as "payments.amount"
        if isinstance(data, str):
            object_name, sep, field_name = data.partition(".")
            if not sep or not object_name or not field_name:
                raise ValueError(f"Expected object.field, got '{data}'")
            return {"object": object_name, "field": field_name}
        return data

    @property
    def qualified(self) -> str:
        return f"{self.object}.{self.field}"

    @classmethod
    def parse(cls, qualified: str) -> "FieldRef":
        """Parse "object.field" notation (handy on the command line).

        raises pydantic's ValidationError, which is a ValueError.
        """
        return cls.model_validate(qualified)


class SchemaField(BaseModel):
    """A field on a schema object."""

    name: str
    label: str | None = None  # falls back to the name for display
    type: FieldType
    enum: list[str] | None = None

    @property
    def display_label(self) -> str:
        return self.label or self.name

    @property
    def is_categorical(self) -> bool:
        # enum-backed fields count even when declared as something other than string
        return self.type == FieldType.STRING or self.enum is not None


class SchemaObject(BaseModel):
    """An object (think: table) in the schema."""

    name: str
    label: str | None = None
    fields: list[SchemaField] = Field(default_factory=list)

    @property
    def display_label(self) -> str:
        return self.label or self.name

    def get_field(self, name: str) -> SchemaField | None:
        """Get a field by name."""
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def date_fields(self) -> list[SchemaField]:
        return [f for f in self.fields if f.type == FieldType.DATE]


class Relationship(BaseModel):
    """A declared relationship between two objects.

    `from` is the parent side and `to` is the child that carries the `via`
    foreign key, e.g. customers -> payments via customer_id.
    """

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")  # "from" is a keyword, hence the alias
    to: str
    type: RelationshipType = RelationshipType.ONE_TO_MANY
    via: str | None = None
    description: str | None = None

    def involves(self, object_name: str) -> bool:
        return object_name in (self.from_, self.to)


class SchemaCatalog(BaseModel):
    """The full schema - objects plus the relationships between them."""

    objects: list[SchemaObject] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)

    # lists are small in practice so linear scans are fine here

    def find_object(self, name: str) -> SchemaObject | None:
        """Get an object by name, or None."""
        for obj in self.objects:
            if obj.name == name:
                return obj
        return None

    def find_field(self, object_name: str, field_name: str) -> SchemaField | None:
        obj = self.find_object(object_name)
        if obj is None:
            return None
        return obj.get_field(field_name)

    def resolve(self, ref: FieldRef) -> SchemaField | None:
        """Resolve a FieldRef to its field definition. None means unresolved."""
        return self.find_field(ref.object, ref.field)

    def relationships_for(self, object_name: str) -> list[Relationship]:
        return [rel for rel in self.relationships if rel.involves(object_name)]

    def relationship_between(self, a: str, b: str) -> Relationship | None:
        """Find a direct relationship between two objects in either direction."""
        for rel in self.relationships:
            if {rel.from_, rel.to} == {a, b}:
                return rel
        return None
