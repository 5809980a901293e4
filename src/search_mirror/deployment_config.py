"""Per-entity-type index configuration using Pydantic.

Each entity type that mirrors its records into the search backend is
described by an ``EntityIndexConfig``. The configs are collected in an
``IndexRegistry`` that is handed to the services explicitly, so there is no
module-level settings map.

Example registry document:
    {
        "entities": [
            {
                "entity_type": "Person",
                "table": "people",
                "url": "http://localhost:9200/site/people",
                "fields": ["first_name", "last_name", "bio"]
            },
            {
                "entity_type": "Page",
                "index": "site",
                "fields": "*",
                "index_failure_policy": "best-effort"
            }
        ]
    }
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import json
from pathlib import Path
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from search_mirror.errors import ConfigurationError


ALL_FIELDS = "*"


def _split_csv(raw_value: str | None) -> list[str]:
    """Split comma-separated config strings into trimmed entries."""

    if not raw_value:
        return []
    return [entry.strip() for entry in raw_value.split(",") if entry.strip()]


@dataclass(frozen=True)
class BackendLocation:
    """Where the index documents of one entity type live."""

    base_url: str
    index: str
    table: str

    @property
    def physical_index(self) -> str:
        """Index name used on the wire; one per (index, table) pair."""
        return f"{self.index}-{self.table}".lower()


def parse_backend_url(url: str) -> dict[str, str]:
    """Split ``scheme://host:port/index/table`` into its parts.

    Returns a mapping with ``base_url`` plus ``index`` and ``table`` when the
    path carries them. Unparseable input yields an empty mapping.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return {}
    if not parsed.scheme or not parsed.netloc:
        return {}

    parts: dict[str, str] = {"base_url": f"{parsed.scheme}://{parsed.netloc}"}
    path_parts = [segment for segment in parsed.path.strip("/").split("/") if segment]
    if path_parts:
        parts["index"] = path_parts.pop(0)
    if path_parts:
        parts["table"] = path_parts.pop(0)
    return parts


class EntityIndexConfig(BaseModel):
    """Indexing configuration for a single entity type.

    The three callable slots replace per-model method overrides:
    - ``extractor(record) -> str`` builds the index text instead of the
      default field extraction; its return value is used verbatim.
    - ``post_process(text) -> str`` runs last on the normalized text.
    - ``data_loader(key) -> record`` replaces the primary-store read used when
      re-reading a record before indexing it.
    """

    model_config = ConfigDict(extra="forbid")

    entity_type: Annotated[
        str,
        Field(min_length=1, description="Entity type (model) name, stored on every index document"),
    ]

    table: Annotated[
        str | None,
        Field(description="Primary-store table of the entity type; defaults to the entity type name"),
    ] = None

    primary_key: Annotated[
        str | None,
        Field(min_length=1, description="Primary key field; read from the primary-store schema when unset"),
    ] = None

    url: Annotated[
        str | None,
        Field(
            description="Backend URL encoding host, index and optionally table",
            examples=["http://localhost:9200/site/people"],
        ),
    ] = None

    index: Annotated[str | None, Field(description="Backend index name (parsed from url when set)")] = None

    index_table: Annotated[
        str | None,
        Field(description="Backend table name (parsed from url, or defaulted to the storage table)"),
    ] = None

    limit: Annotated[int, Field(ge=1, description="Default number of hits per search")] = 200

    fields: Annotated[
        Literal["*"] | list[str],
        Field(description="Fields considered for the index text: '*' or an explicit ordered list"),
    ] = ALL_FIELDS

    query_after_save: Annotated[
        bool,
        Field(description="Re-read the full record from the primary store before indexing it"),
    ] = True

    rebuild_on_update: Annotated[bool, Field(description="Index records when they are saved")] = True

    deferred_writes: Annotated[
        bool,
        Field(description="Queue index writes until the host calls flush()"),
    ] = False

    index_failure_policy: Annotated[
        Literal["strict", "best-effort"],
        Field(description="Whether a failed index write during a live save is raised or only logged"),
    ] = "strict"

    extractor: Callable[[Mapping[str, Any]], str] | None = Field(default=None, exclude=True)
    post_process: Callable[[str], str] | None = Field(default=None, exclude=True)
    data_loader: Callable[[Any], Mapping[str, Any] | None] | None = Field(default=None, exclude=True)

    @field_validator("fields", mode="before")
    @classmethod
    def _coerce_fields(cls, value: object) -> object:
        if isinstance(value, str) and value.strip() != ALL_FIELDS:
            return _split_csv(value)
        if isinstance(value, str):
            return ALL_FIELDS
        if isinstance(value, (tuple, set)):
            return list(value)
        return value

    @model_validator(mode="after")
    def _apply_url(self) -> "EntityIndexConfig":
        if self.url:
            parsed = parse_backend_url(self.url)
            if not parsed:
                raise ValueError(f"Unable to parse backend url: {self.url!r}")
            self.index = parsed.get("index", self.index)
            self.index_table = parsed.get("table", self.index_table)
        return self

    @property
    def storage_table(self) -> str:
        return self.table or self.entity_type

    def allowed_fields(self) -> list[str] | None:
        """Return the explicit field whitelist, or None for all fields."""
        if self.fields == ALL_FIELDS:
            return None
        return list(self.fields)

    def location(self, default_base_url: str) -> BackendLocation:
        """Resolve the backend location, failing fast when identifiers are missing."""
        base_url = default_base_url
        if self.url:
            base_url = parse_backend_url(self.url)["base_url"]
        if not self.index:
            raise ConfigurationError(
                f"Missing the 'index' configuration for entity type '{self.entity_type}' "
                "(set index, or a url of the form scheme://host:port/index/table)"
            )
        table = self.index_table or self.storage_table
        if not table:
            raise ConfigurationError(f"Missing the 'table' configuration for entity type '{self.entity_type}'")
        return BackendLocation(base_url=base_url.rstrip("/"), index=self.index, table=table)


class IndexRegistry(BaseModel):
    """Registry of entity index configurations, keyed by entity type."""

    model_config = ConfigDict(extra="forbid")

    entities: list[EntityIndexConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_entity_types(self) -> "IndexRegistry":
        """Ensure every entity type is configured once."""
        names = [entity.entity_type for entity in self.entities]
        if len(names) != len(set(names)):
            duplicates = sorted({name for name in names if names.count(name) > 1})
            raise ValueError(f"Duplicate entity types found: {duplicates}")
        return self

    @classmethod
    def from_json_file(cls, path: Path) -> "IndexRegistry":
        """Load the registry from a JSON document.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the document is invalid
        """
        if not path.exists():
            raise FileNotFoundError(f"Index registry not found: {path}")

        with path.open() as f:
            data = json.load(f)

        return cls.model_validate(data)

    def register(self, config: EntityIndexConfig) -> EntityIndexConfig:
        """Add (or replace) the configuration of an entity type."""
        self.entities = [entity for entity in self.entities if entity.entity_type != config.entity_type]
        self.entities.append(config)
        return config

    def get(self, entity_type: str) -> EntityIndexConfig:
        for entity in self.entities:
            if entity.entity_type == entity_type:
                return entity
        raise ConfigurationError(f"Entity type '{entity_type}' is not configured for indexing")

    def list_entity_types(self) -> list[str]:
        return [entity.entity_type for entity in self.entities]
