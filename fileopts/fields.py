"""
FileOpts Fields — typed field keys and upload-capable field definitions.

A field is identified by ``entity_type.bundle.field_name`` (schema fields)
or by a bare name (custom fields registered at runtime). FieldKey is the
only place those strings are built or parsed:

    canonical      node.article.field_image        | teaser_image
    config key     upload_option.node.article...   | custom_fields.teaser_image
    form name      upload_option__node__article... | custom_fields__teaser_image
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from fileopts.engine.errors import FileOptsConfigError

logger = logging.getLogger("fileopts.fields")

SCHEMA_PREFIX = "upload_option"
CUSTOM_PREFIX = "custom_fields"

_COMPONENT_RE = re.compile(r"^[a-z0-9_]+$")


def _check_component(value: str, what: str) -> None:
    if not value or not _COMPONENT_RE.match(value) or "__" in value:
        raise FileOptsConfigError(
            f"Invalid {what} '{value}': use lowercase letters, digits and single underscores",
            value=value,
        )


@dataclass(frozen=True)
class FieldKey:
    """Composite identifier of an upload-capable field."""

    field_name: str
    entity_type: Optional[str] = None
    bundle: Optional[str] = None

    def __post_init__(self):
        if (self.entity_type is None) != (self.bundle is None):
            raise FileOptsConfigError(
                "entity_type and bundle must be given together",
                value=self.field_name,
            )
        _check_component(self.field_name, "field name")
        if self.entity_type is not None:
            _check_component(self.entity_type, "entity type")
            _check_component(self.bundle, "bundle")

    @classmethod
    def schema(cls, entity_type: str, bundle: str, field_name: str) -> "FieldKey":
        return cls(field_name=field_name, entity_type=entity_type, bundle=bundle)

    @classmethod
    def custom(cls, name: str) -> "FieldKey":
        return cls(field_name=name)

    @property
    def is_custom(self) -> bool:
        return self.entity_type is None

    @property
    def canonical(self) -> str:
        if self.is_custom:
            return self.field_name
        return f"{self.entity_type}.{self.bundle}.{self.field_name}"

    @property
    def config_key(self) -> str:
        prefix = CUSTOM_PREFIX if self.is_custom else SCHEMA_PREFIX
        return f"{prefix}.{self.canonical}"

    @property
    def form_name(self) -> str:
        prefix = CUSTOM_PREFIX if self.is_custom else SCHEMA_PREFIX
        return f"{prefix}__{self.canonical.replace('.', '__')}"

    @classmethod
    def parse(cls, text: str) -> "FieldKey":
        """Parse the canonical form: three dotted parts or a bare name."""
        parts = text.split(".")
        if len(parts) == 3:
            return cls.schema(*parts)
        if len(parts) == 1:
            return cls.custom(parts[0])
        raise FileOptsConfigError(f"Invalid field key '{text}'", value=text)

    @classmethod
    def from_config_key(cls, key: str) -> "FieldKey":
        prefix, _, rest = key.partition(".")
        if prefix == CUSTOM_PREFIX:
            return cls.custom(rest)
        if prefix == SCHEMA_PREFIX:
            key_obj = cls.parse(rest)
            if not key_obj.is_custom:
                return key_obj
        raise FileOptsConfigError(f"Invalid config key '{key}'", value=key)

    @classmethod
    def from_form_name(cls, name: str) -> "FieldKey":
        prefix, _, rest = name.partition("__")
        parts = rest.split("__")
        if prefix == CUSTOM_PREFIX and len(parts) == 1:
            return cls.custom(parts[0])
        if prefix == SCHEMA_PREFIX and len(parts) == 3:
            return cls.schema(*parts)
        raise FileOptsConfigError(f"Invalid form element name '{name}'", value=name)

    def __str__(self) -> str:
        return self.canonical


class FieldDefinition(BaseModel):
    """
    Settings of one upload-capable field: labels, where uploads land and
    which files it accepts.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    key: FieldKey
    entity_type_label: str = ""
    bundle_label: str = ""
    field_label: str = ""
    upload_location: str = Field(
        default="",
        description="Directory under the files root; {Y}, {m}, {d} expand to the upload date",
    )
    file_extensions: str = Field(default="txt", description="Space separated allow-list; empty allows any")
    max_filesize_bytes: int = Field(default=0, ge=0, description="0 means the platform limit applies")
    required: bool = False

    def upload_directory(self, files_root: Path, now: Optional[datetime] = None) -> Path:
        """Expand upload_location for *now* and anchor it at files_root."""
        now = now or datetime.now(timezone.utc)
        location = (
            self.upload_location
            .replace("{Y}", now.strftime("%Y"))
            .replace("{m}", now.strftime("%m"))
            .replace("{d}", now.strftime("%d"))
        )
        location = location.strip("/")
        return files_root / location if location else files_root

    @property
    def allowed_extensions(self) -> List[str]:
        return [ext.lower().lstrip(".") for ext in self.file_extensions.split() if ext]


class SchemaIntrospector(Protocol):
    """Source of upload-capable field definitions."""

    def list_upload_capable_fields(self) -> Dict[str, Dict[str, Dict[str, str]]]: ...

    def get_field(self, key: FieldKey) -> Optional[FieldDefinition]: ...

    def definitions(self) -> List[FieldDefinition]: ...


class StaticSchemaIntrospector:
    """Introspector over a fixed list of field definitions (from fileopts.yaml)."""

    def __init__(self, definitions: Iterable[FieldDefinition] = ()):
        self._fields: Dict[FieldKey, FieldDefinition] = {}
        for definition in definitions:
            if definition.key.is_custom:
                raise FileOptsConfigError(
                    f"Field '{definition.key}' needs entity_type.bundle.field_name",
                    field_key=str(definition.key),
                )
            self._fields[definition.key] = definition

    @classmethod
    def from_config(cls, field_configs) -> "StaticSchemaIntrospector":
        """Build from PlatformConfig.fields entries."""
        definitions = []
        for fc in field_configs:
            definitions.append(FieldDefinition(
                key=FieldKey.parse(fc.key),
                entity_type_label=fc.entity_type_label,
                bundle_label=fc.bundle_label,
                field_label=fc.field_label,
                upload_location=fc.upload_location,
                file_extensions=fc.file_extensions,
                max_filesize_bytes=fc.max_filesize_mb * 1024 * 1024,
                required=fc.required,
            ))
        logger.info(f"Loaded {len(definitions)} upload-capable field definitions")
        return cls(definitions)

    def list_upload_capable_fields(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        """
        Group fields by entity type label:
        {entity_label: {canonical_key: {"bundle": ..., "field_name": ...}}}
        """
        grouped: Dict[str, Dict[str, Dict[str, str]]] = {}
        for key, definition in self._fields.items():
            entity_label = definition.entity_type_label or key.entity_type
            grouped.setdefault(entity_label, {})[key.canonical] = {
                "bundle": definition.bundle_label or key.bundle,
                "field_name": definition.field_label or key.field_name,
            }
        return grouped

    def get_field(self, key: FieldKey) -> Optional[FieldDefinition]:
        return self._fields.get(key)

    def definitions(self) -> List[FieldDefinition]:
        return list(self._fields.values())
