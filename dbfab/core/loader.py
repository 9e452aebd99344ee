"""Builds table specs, batches and scenarios from YAML or JSON documents.

A scenario file looks like::

    database:
      driver: sqlite
      database: demo.db
    settings:
      batch_size: 100000
    tables:
      users:
        columns:
          - {name: id, type: integer, generator: {type: sequence}}
          - {name: email, type: string, generator: {type: constant, value: ""}}
    scenario:
      name: demo
      steps:
        - generate: {table: users, rows: 1000}
        - transform:
            table: users
            batches:
              - transformations:
                  - {type: template, column: email, template: "user{id}@example.com"}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from dbfab.core.database import DatabaseConfig
from dbfab.core.exceptions import ConfigurationError
from dbfab.core.models import (
    ChoiceByLookupGenerator, ChoiceGenerator, ColumnSpec, ColumnType, ConstantGenerator,
    DatetimeGenerator, GenerateStep, GenerationSettings, GeneratorKind, GeneratorSpec,
    LookupTransformation, MutateTransformation, RandomFloatGenerator, RandomIntGenerator,
    RandomStringGenerator, Scenario, ScenarioStep, SequenceGenerator, SwapTransformation,
    TableSpec, TemplateTransformation, Transformation, TransformationBatch, TransformationKind,
    TransformStep, UuidGenerator,
)


logger = logging.getLogger(__name__)


@dataclass
class ScenarioDocument:
    """Everything a scenario file declares."""
    scenario: Optional[Scenario] = None
    tables: Dict[str, TableSpec] = field(default_factory=dict)
    database: Optional[DatabaseConfig] = None
    settings: GenerationSettings = field(default_factory=GenerationSettings)


def _require(data: Dict[str, Any], key: str, context: str) -> Any:
    if key not in data:
        raise ConfigurationError(f"{context}: missing required key '{key}'")
    return data[key]


def _as_mapping(data: Any, context: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigurationError(f"{context}: expected a mapping, got {type(data).__name__}")
    return data


def _parse_datetime(value: Any, context: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise ConfigurationError(f"{context}: invalid datetime '{value}'") from e
    raise ConfigurationError(f"{context}: invalid datetime {value!r}")


def _generator_from_dict(data: Dict[str, Any], context: str) -> GeneratorSpec:
    data = _as_mapping(data, context)
    kind_name = _require(data, "type", context)
    try:
        kind = GeneratorKind(kind_name)
    except ValueError:
        raise ConfigurationError(
            f"{context}: unknown generator type '{kind_name}'. "
            f"Supported: {[k.value for k in GeneratorKind]}"
        )

    builders: Dict[GeneratorKind, Callable[[], GeneratorSpec]] = {
        GeneratorKind.SEQUENCE: lambda: SequenceGenerator(
            start=data.get("start", 1), step=data.get("step", 1)),
        GeneratorKind.RANDOM_INT: lambda: RandomIntGenerator(
            min_value=_require(data, "min", context), max_value=_require(data, "max", context)),
        GeneratorKind.RANDOM_FLOAT: lambda: RandomFloatGenerator(
            min_value=_require(data, "min", context), max_value=_require(data, "max", context),
            precision=data.get("precision", 2)),
        GeneratorKind.RANDOM_STRING: lambda: RandomStringGenerator(
            length=_require(data, "length", context)),
        GeneratorKind.CHOICE: lambda: ChoiceGenerator(values=_require(data, "values", context)),
        GeneratorKind.CHOICE_BY_LOOKUP: lambda: ChoiceByLookupGenerator(
            values=_require(data, "values", context)),
        GeneratorKind.CONSTANT: lambda: ConstantGenerator(value=data.get("value")),
        GeneratorKind.DATETIME: lambda: DatetimeGenerator(
            start=_parse_datetime(data.get("from", "2020-01-01"), context),
            end=_parse_datetime(data.get("to"), context)),
        GeneratorKind.UUID: lambda: UuidGenerator(),
    }
    return builders[kind]()


def column_from_dict(data: Dict[str, Any], context: str = "column") -> ColumnSpec:
    data = _as_mapping(data, context)
    name = _require(data, "name", context)
    context = f"{context} {name}"
    try:
        column_type = ColumnType(_require(data, "type", context))
    except ValueError:
        raise ConfigurationError(
            f"{context}: unknown column type '{data['type']}'. "
            f"Supported: {[t.value for t in ColumnType]}"
        )
    return ColumnSpec(
        name=name,
        type=column_type,
        generator=_generator_from_dict(_require(data, "generator", context), f"{context} generator"),
        nullable=bool(data.get("nullable", False)),
        null_probability=data.get("null_probability", data.get("nullProbability", 0.0)),
    )


def table_from_dict(data: Dict[str, Any], name: Optional[str] = None) -> TableSpec:
    data = _as_mapping(data, "table")
    name = data.get("name", name)
    if not name:
        raise ConfigurationError("table: missing required key 'name'")
    columns = _require(data, "columns", f"table {name}")
    if not isinstance(columns, list):
        raise ConfigurationError(f"table {name}: columns must be a list")
    return TableSpec(
        name=name,
        columns=tuple(column_from_dict(c, f"table {name} column") for c in columns),
        description=data.get("description"),
    )


def transformation_from_dict(data: Dict[str, Any], context: str = "transformation") -> Transformation:
    data = _as_mapping(data, context)
    kind_name = _require(data, "type", context)
    try:
        kind = TransformationKind(kind_name)
    except ValueError:
        raise ConfigurationError(
            f"{context}: unknown transformation type '{kind_name}'. "
            f"Supported: {[k.value for k in TransformationKind]}"
        )

    if kind == TransformationKind.TEMPLATE:
        return TemplateTransformation(
            column=_require(data, "column", context),
            template=_require(data, "template", context),
            lowercase=bool(data.get("lowercase", False)),
        )
    if kind == TransformationKind.MUTATE:
        operations = data.get("operations")
        kwargs = {"operations": tuple(operations)} if operations is not None else {}
        return MutateTransformation(
            column=_require(data, "column", context),
            probability=_require(data, "probability", context),
            **kwargs,
        )
    if kind == TransformationKind.LOOKUP:
        join_on = _as_mapping(data.get("join_on", data.get("joinOn", {})), f"{context} join_on")
        return LookupTransformation(
            column=_require(data, "column", context),
            from_table=data.get("from_table", data.get("fromTable")) or _require(data, "from_table", context),
            from_column=data.get("from_column", data.get("fromColumn")) or _require(data, "from_column", context),
            target_column=join_on.get("target_column", join_on.get("targetColumn"))
            or _require(join_on, "target_column", f"{context} join_on"),
            lookup_column=join_on.get("lookup_column", join_on.get("lookupColumn"))
            or _require(join_on, "lookup_column", f"{context} join_on"),
        )
    return SwapTransformation(
        column1=_require(data, "column1", context),
        column2=_require(data, "column2", context),
        probability=_require(data, "probability", context),
    )


def batch_from_dict(data: Union[Dict[str, Any], List[Any]], context: str = "batch") -> TransformationBatch:
    if isinstance(data, list):
        data = {"transformations": data}
    data = _as_mapping(data, context)
    transformations = data.get("transformations", [])
    return TransformationBatch(
        transformations=tuple(
            transformation_from_dict(t, f"{context} transformation {i + 1}")
            for i, t in enumerate(transformations)
        ),
        description=data.get("description"),
    )


def _resolve_table(reference: Any, tables: Dict[str, TableSpec], context: str) -> TableSpec:
    if isinstance(reference, str):
        if reference not in tables:
            raise ConfigurationError(f"{context}: unknown table '{reference}'")
        return tables[reference]
    return table_from_dict(reference)


def _step_from_dict(data: Dict[str, Any], tables: Dict[str, TableSpec], context: str) -> ScenarioStep:
    data = _as_mapping(data, context)
    if "generate" in data:
        spec = _as_mapping(data["generate"], context)
        table = _resolve_table(_require(spec, "table", context), tables, context)
        return GenerateStep(
            table=table,
            row_count=_require(spec, "rows", context),
            batches=tuple(batch_from_dict(b, f"{context} batch {i + 1}")
                          for i, b in enumerate(spec.get("batches", []))),
        )
    if "transform" in data:
        spec = _as_mapping(data["transform"], context)
        table = _require(spec, "table", context)
        table_name = table if isinstance(table, str) else _as_mapping(table, context).get("name")
        return TransformStep(
            table_name=table_name,
            batches=tuple(batch_from_dict(b, f"{context} batch {i + 1}")
                          for i, b in enumerate(spec.get("batches", []))),
        )
    raise ConfigurationError(f"{context}: expected a 'generate' or 'transform' step")


def scenario_from_dict(data: Dict[str, Any], tables: Optional[Dict[str, TableSpec]] = None) -> Scenario:
    data = _as_mapping(data, "scenario")
    tables = tables or {}
    steps = data.get("steps", [])
    return Scenario(
        name=data.get("name", "scenario"),
        description=data.get("description"),
        steps=tuple(_step_from_dict(s, tables, f"scenario step {i + 1}") for i, s in enumerate(steps)),
    )


def document_from_dict(data: Dict[str, Any]) -> ScenarioDocument:
    data = _as_mapping(data, "document")
    document = ScenarioDocument()
    for name, table in _as_mapping(data.get("tables") or {}, "tables").items():
        document.tables[name] = table_from_dict(table, name)
    try:
        if data.get("database"):
            document.database = DatabaseConfig(**data["database"])
        if data.get("settings"):
            document.settings = GenerationSettings(**data["settings"])
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    if data.get("scenario"):
        document.scenario = scenario_from_dict(data["scenario"], document.tables)
    return document


def load_document(path: Union[str, Path]) -> ScenarioDocument:
    """Load a scenario file; ``.json`` files are JSON, everything else YAML."""
    path = Path(path)
    logger.info(f"Loading scenario file {path}")
    with open(path, "r") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    return document_from_dict(data or {})
