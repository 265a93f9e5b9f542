"""
Collection schemas

Each syncable collection declares how its local fields map onto properties
of the linked Notion database and which fields take part in conflict
detection.
"""

from typing import Any, Dict, Mapping, Optional, Tuple
from dataclasses import dataclass, field

from ..notion.properties import PropertyKind, extract_value, build_property


@dataclass(frozen=True)
class FieldSpec:
    """One local field and the Notion property it is stored in

    ``property_names`` lists accepted property names in order of preference;
    the first one is used for writes. ``value_map`` translates Notion values
    (select labels, checkbox booleans) into local values.
    """

    name: str
    kind: str
    property_names: Tuple[str, ...]
    value_map: Optional[Mapping[Any, Any]] = None

    def extract(self, properties: Dict[str, Any]) -> Any:
        for property_name in self.property_names:
            if property_name not in properties:
                continue
            value = extract_value(properties[property_name], self.kind)
            if value is not None:
                return self._to_local(value)
        return None

    def to_property(self, value: Any) -> Dict[str, Any]:
        return build_property(self._to_external(value), self.kind)

    def _to_local(self, value: Any) -> Any:
        if self.value_map is None:
            return value
        if value in self.value_map:
            return self.value_map[value]
        # Unmapped select labels fall back to their lowercased form
        return value.lower() if isinstance(value, str) else value

    def _to_external(self, value: Any) -> Any:
        if self.value_map is None or value is None:
            return value
        for external_value, local_value in self.value_map.items():
            if local_value == value:
                return external_value
        return value


@dataclass(frozen=True)
class CollectionSchema:
    """Field mapping and compared fields of one collection"""

    name: str
    table: str
    title_field: str
    fields: Tuple[FieldSpec, ...]
    compare_fields: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        if not self.compare_fields:
            object.__setattr__(self, "compare_fields", tuple(spec.name for spec in self.fields))

    def field_spec(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def extract_fields(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Reduce a Notion property bag to local field values"""
        properties = properties or {}
        return {spec.name: spec.extract(properties) for spec in self.fields}

    def title_of(self, fields: Dict[str, Any]) -> Optional[str]:
        value = fields.get(self.title_field)
        return str(value) if value is not None else None

    def to_properties(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Build a Notion property payload from local field values

        Only fields known to the schema and present in ``fields`` are written.
        """
        properties = {}
        for spec in self.fields:
            if spec.name in fields:
                properties[spec.property_names[0]] = spec.to_property(fields[spec.name])
        return properties


def _text(name: str, *property_names: str) -> FieldSpec:
    return FieldSpec(name, PropertyKind.RICH_TEXT, property_names)


def _title(name: str, *property_names: str) -> FieldSpec:
    return FieldSpec(name, PropertyKind.TITLE, property_names)


def _select(name: str, property_name: str, value_map: Optional[Mapping[str, str]] = None) -> FieldSpec:
    return FieldSpec(name, PropertyKind.SELECT, (property_name,), value_map)


SCHEMAS: Dict[str, CollectionSchema] = {
    "tasks": CollectionSchema(
        name="tasks",
        table="tasks",
        title_field="title",
        fields=(
            _title("title", "Title", "Task Name"),
            _text("description", "Description"),
            _select("priority", "Priority", {
                "Low": "low", "Medium": "medium", "High": "high", "Urgent": "urgent",
            }),
            _select("status", "Status", {
                "Pending": "pending",
                "In Progress": "in_progress",
                "Completed": "completed",
                "Approved": "approved",
                "Cancelled": "cancelled",
            }),
            FieldSpec("due_date", PropertyKind.DATE, ("Due Date",)),
        ),
    ),
    "rules": CollectionSchema(
        name="rules",
        table="rules",
        title_field="title",
        fields=(
            _title("title", "Title"),
            _text("description", "Description"),
            _select("category", "Rule Type", {
                "Standing": "standing",
                "Situational": "situational",
                "Temporary": "temporary",
                "Optional": "protocol",
            }),
            FieldSpec("status", PropertyKind.CHECKBOX, ("Active",), {True: "active", False: "inactive"}),
            FieldSpec("priority", PropertyKind.NUMBER, ("Priority",)),
        ),
    ),
    "contracts": CollectionSchema(
        name="contracts",
        table="contracts",
        title_field="title",
        fields=(
            _title("title", "Title"),
            _text("content", "Content"),
            FieldSpec("version", PropertyKind.NUMBER, ("Version",)),
            _select("status", "Status", {
                "Draft": "draft",
                "Pending Signature": "pending_signature",
                "Active": "active",
                "Archived": "archived",
                "Superseded": "superseded",
            }),
        ),
    ),
    "journal": CollectionSchema(
        name="journal",
        table="journal_entries",
        title_field="title",
        fields=(
            _title("title", "Title"),
            _text("content", "Content"),
            _select("entry_type", "Entry Type", {
                "Personal": "personal",
                "Shared": "shared",
                "Gratitude": "gratitude",
                "Scene Log": "scene_log",
            }),
            FieldSpec("tags", PropertyKind.MULTI_SELECT, ("Tags",)),
        ),
    ),
    "calendar": CollectionSchema(
        name="calendar",
        table="calendar_events",
        title_field="title",
        fields=(
            _title("title", "Title"),
            _text("description", "Description"),
            FieldSpec("start_time", PropertyKind.DATE, ("Start Time",)),
            FieldSpec("end_time", PropertyKind.DATE, ("End Time",)),
        ),
    ),
    "app_ideas": CollectionSchema(
        name="app_ideas",
        table="app_ideas",
        title_field="title",
        fields=(
            _title("title", "Title"),
            _text("description", "Description"),
            _select("category", "Category"),
            _select("priority", "Priority", {"Low": "low", "Medium": "medium", "High": "high"}),
            _select("status", "Status", {
                "New": "new",
                "In Progress": "in_progress",
                "Completed": "completed",
                "Archived": "archived",
            }),
        ),
    ),
    "image_generations": CollectionSchema(
        name="image_generations",
        table="image_generations",
        title_field="prompt",
        fields=(
            _title("prompt", "Prompt"),
            _select("model", "Model"),
            _select("type", "Type"),
        ),
    ),
}


def get_schema(collection: str) -> CollectionSchema:
    """Get the schema of a collection

    Unknown collections get a minimal title + description schema.
    """
    schema = SCHEMAS.get(collection)
    if schema is not None:
        return schema

    return CollectionSchema(
        name=collection,
        table=collection,
        title_field="title",
        fields=(
            _title("title", "Title", "Name"),
            _text("description", "Description"),
        ),
    )


def supported_collections() -> Tuple[str, ...]:
    return tuple(SCHEMAS.keys())
