"""YAML parser and schema registry for ReportForge.

the registry is the source of truth for objects, fields and relationships.
yaml because it's readable, plays nice with git, and allows comments next to
field definitions. formulas and warehouse snapshots are loaded from here too so
all the file handling lives in one place.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from reportforge.executor.duckdb_executor import READERS, DuckDBExecutor
from reportforge.models.metric import MetricFormula
from reportforge.models.schema import Relationship, SchemaCatalog, SchemaObject
from reportforge.warehouse import Warehouse

logger = logging.getLogger(__name__)


def _yaml_files(path: Path) -> list[Path]:
    if path.is_file():
        return [path]
    # support both .yaml and .yml - people have opinions about this
    return sorted(list(path.glob("**/*.yaml")) + list(path.glob("**/*.yml")))


class SchemaRegistry:
    """Registry of schema objects and the relationships between them.

    loads yaml files, validates references, and provides lookups. the engine
    only ever sees the read-only SchemaCatalog built from it.
    """

    def __init__(self) -> None:
        self.objects: dict[str, SchemaObject] = {}
        self.relationships: list[Relationship] = []
        self._catalog: SchemaCatalog | None = None

    def load_directory(self, path: str | Path) -> None:
        """Load a schema file, or every YAML file under a directory.

        order doesn't matter since references are validated after
        everything has been read.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Schema path not found: {path}")

        yaml_files = _yaml_files(path)
        if not yaml_files:
            raise ValueError(f"No YAML files found in {path}")

        for yaml_file in yaml_files:
            self._load_file(yaml_file)

        self._validate_references()
        self._catalog = None
        logger.debug(
            "loaded %d objects and %d relationships from %s",
            len(self.objects),
            len(self.relationships),
            path,
        )

    def _load_file(self, path: Path) -> None:
        """Parse a single YAML file.

        files can contain objects, relationships, or both. other top-level
        keys (formulas, say) are ignored so a single file can hold everything.
        """
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return  # empty file

        for obj_data in data.get("objects", []):
            obj = SchemaObject.model_validate(obj_data)
            if obj.name in self.objects:
                raise ValueError(f"Duplicate object: {obj.name}")
            self._check_fields(obj)
            self.objects[obj.name] = obj

        for rel_data in data.get("relationships", []):
            self.relationships.append(Relationship.model_validate(rel_data))

    def _check_fields(self, obj: SchemaObject) -> None:
        seen: set[str] = set()
        for field in obj.fields:
            if field.name in seen:
                raise ValueError(f"Duplicate field '{field.name}' on object '{obj.name}'")
            seen.add(field.name)

    def _validate_references(self) -> None:
        """Relationships must point at known objects, and `via` at a real field.

        catches broken references at load time rather than as silently empty
        reports later on.
        """
        for rel in self.relationships:
            for end in (rel.from_, rel.to):
                if end not in self.objects:
                    raise ValueError(
                        f"Relationship {rel.from_} -> {rel.to} references unknown object '{end}'"
                    )
            if rel.via is not None and self.objects[rel.to].get_field(rel.via) is None:
                raise ValueError(
                    f"Relationship {rel.from_} -> {rel.to} uses unknown field "
                    f"'{rel.to}.{rel.via}'"
                )

    @property
    def catalog(self) -> SchemaCatalog:
        """Read-only catalog handed to the engine. rebuilt after each load."""
        if self._catalog is None:
            self._catalog = SchemaCatalog(
                objects=list(self.objects.values()),
                relationships=list(self.relationships),
            )
        return self._catalog

    # --- lookup methods ---
    # get_* raise KeyError like a dict would, find_* on the catalog return None

    def get_object(self, name: str) -> SchemaObject:
        """Get an object by name."""
        if name not in self.objects:
            raise KeyError(f"Unknown object: {name}")
        return self.objects[name]

    def get_relationship(self, a: str, b: str) -> Relationship:
        """Get the relationship between two objects, in either direction."""
        rel = self.catalog.relationship_between(a, b)
        if rel is None:
            raise KeyError(f"No relationship between {a} and {b}")
        return rel


def load_schema(path: str | Path) -> SchemaCatalog:
    """Shortcut for loading a catalog from a file or directory."""
    registry = SchemaRegistry()
    registry.load_directory(path)
    return registry.catalog


def load_formulas(path: str | Path) -> list[MetricFormula]:
    """Load every formula from a YAML file's `formulas:` list.

    a file holding a single formula (no `formulas:` key) works too.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Formula file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if not data:
        return []
    if isinstance(data, dict) and "formulas" in data:
        items = data["formulas"] or []
    elif isinstance(data, dict) and "blocks" in data:
        items = [data]
    else:
        raise ValueError(f"No formulas found in {path}")

    formulas = [MetricFormula.model_validate(item) for item in items]
    names = [f.name for f in formulas if f.name]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate formula: {', '.join(duplicates)}")
    return formulas


def load_formula(path: str | Path, name: str | None = None) -> MetricFormula:
    """Load one formula, by name when the file holds several."""
    formulas = load_formulas(path)
    if not formulas:
        raise ValueError(f"No formulas found in {path}")
    if name is None:
        return formulas[0]
    for formula in formulas:
        if formula.name == name:
            return formula
    raise KeyError(f"Unknown formula: {name}")


def _read_mapping(path: Path) -> dict[str, Any]:
    with open(path) as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping of object -> records in {path}")
    return data


def load_warehouse(path: str | Path, schema: SchemaCatalog | None = None) -> Warehouse:
    """Load a warehouse snapshot.

    a .json/.yaml/.yml file holds {object: [records]}. a .csv/.parquet file is
    one object named after the file stem. a directory combines all of those.

    Raises:
        FileNotFoundError: If the path doesn't exist.
        ValueError: For unsupported or malformed files.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Warehouse path not found: {path}")

    files = sorted(p for p in path.iterdir() if p.is_file()) if path.is_dir() else [path]
    data: dict[str, list[dict[str, Any]]] = {}
    with DuckDBExecutor() as executor:
        for file in files:
            suffix = file.suffix.lower()
            if suffix in (".json", ".yaml", ".yml"):
                for object_name, records in _read_mapping(file).items():
                    if not isinstance(records, list):
                        raise ValueError(f"Records for '{object_name}' in {file} must be a list")
                    data.setdefault(object_name, []).extend(records)
            elif suffix in READERS:
                data.setdefault(file.stem, []).extend(executor.read_records(file))
            elif path.is_dir():
                logger.debug("skipping %s", file)
            else:
                raise ValueError(f"Unsupported warehouse file: {file.name}")

    return Warehouse(data, schema)
