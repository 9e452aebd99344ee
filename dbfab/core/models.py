"""Data models for table specifications, transformations and results."""

import math
from datetime import date, datetime
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, validator

from dbfab.core.exceptions import ConfigurationError


class ColumnType(Enum):
    """Logical column types, mapped to physical types by each dialect."""
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    STRING = "string"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    DATE = "date"


class GeneratorKind(Enum):
    """Enumeration of column generator kinds."""
    SEQUENCE = "sequence"
    RANDOM_INT = "randomInt"
    RANDOM_FLOAT = "randomFloat"
    RANDOM_STRING = "randomString"
    CHOICE = "choice"
    CHOICE_BY_LOOKUP = "choiceByLookup"
    CONSTANT = "constant"
    DATETIME = "datetime"
    UUID = "uuid"


class TransformationKind(Enum):
    """Enumeration of post-generation transformations."""
    TEMPLATE = "template"
    MUTATE = "mutate"
    LOOKUP = "lookup"
    SWAP = "swap"


class MutationOperation(Enum):
    """Character-level edits applied by a mutate transformation."""
    REPLACE = "replace"
    DELETE = "delete"
    INSERT = "insert"


def _check_int(owner: str, name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{owner}.{name} must be an integer, got {value!r}")


def _check_number(owner: str, name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ConfigurationError(f"{owner}.{name} must be a finite number, got {value!r}")


def _check_probability(owner: str, value: Any) -> None:
    _check_number(owner, "probability", value)
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{owner}.probability must be within [0, 1], got {value}")


# Generators

@dataclass(frozen=True)
class SequenceGenerator:
    """Arithmetic progression keyed by the row ordinal."""
    start: int = 1
    step: int = 1
    kind: ClassVar[GeneratorKind] = GeneratorKind.SEQUENCE

    def __post_init__(self):
        _check_int("sequence", "start", self.start)
        _check_int("sequence", "step", self.step)
        if self.step == 0:
            raise ConfigurationError("sequence.step must not be zero")


@dataclass(frozen=True)
class RandomIntGenerator:
    """Uniform integer in the closed interval [min_value, max_value]."""
    min_value: int
    max_value: int
    kind: ClassVar[GeneratorKind] = GeneratorKind.RANDOM_INT

    def __post_init__(self):
        _check_int("randomInt", "min", self.min_value)
        _check_int("randomInt", "max", self.max_value)
        if self.min_value > self.max_value:
            raise ConfigurationError(
                f"randomInt.min ({self.min_value}) must not exceed max ({self.max_value})"
            )

    @property
    def width(self) -> int:
        return self.max_value - self.min_value + 1


@dataclass(frozen=True)
class RandomFloatGenerator:
    """Uniform float between the bounds, rounded to ``precision`` digits."""
    min_value: float
    max_value: float
    precision: int = 2
    kind: ClassVar[GeneratorKind] = GeneratorKind.RANDOM_FLOAT

    def __post_init__(self):
        _check_number("randomFloat", "min", self.min_value)
        _check_number("randomFloat", "max", self.max_value)
        _check_int("randomFloat", "precision", self.precision)
        if self.min_value > self.max_value:
            raise ConfigurationError(
                f"randomFloat.min ({self.min_value}) must not exceed max ({self.max_value})"
            )
        if self.precision < 0:
            raise ConfigurationError("randomFloat.precision must not be negative")


@dataclass(frozen=True)
class RandomStringGenerator:
    """Random string of exactly ``length`` characters."""
    length: int
    kind: ClassVar[GeneratorKind] = GeneratorKind.RANDOM_STRING

    def __post_init__(self):
        _check_int("randomString", "length", self.length)
        if self.length < 0:
            raise ConfigurationError("randomString.length must not be negative")


@dataclass(frozen=True)
class ChoiceGenerator:
    """Uniform pick from a small literal list, inlined per row."""
    values: Tuple[Any, ...]
    kind: ClassVar[GeneratorKind] = GeneratorKind.CHOICE

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class ChoiceByLookupGenerator:
    """Uniform pick from a large list, materialized once per statement."""
    values: Tuple[Any, ...]
    kind: ClassVar[GeneratorKind] = GeneratorKind.CHOICE_BY_LOOKUP

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class ConstantGenerator:
    value: Any = None
    kind: ClassVar[GeneratorKind] = GeneratorKind.CONSTANT


@dataclass(frozen=True)
class DatetimeGenerator:
    """Whole-second timestamp in the closed interval [start, end].

    Naive datetimes are taken as UTC. ``end=None`` means the time at which
    the statement is compiled.
    """
    start: datetime = datetime(2020, 1, 1)
    end: Optional[datetime] = None
    kind: ClassVar[GeneratorKind] = GeneratorKind.DATETIME

    def __post_init__(self):
        object.__setattr__(self, "start", _as_datetime("datetime.from", self.start))
        if self.end is not None:
            object.__setattr__(self, "end", _as_datetime("datetime.to", self.end))
            if naive_utc(self.start) > naive_utc(self.end):
                raise ConfigurationError("datetime.from must not be later than datetime.to")


@dataclass(frozen=True)
class UuidGenerator:
    kind: ClassVar[GeneratorKind] = GeneratorKind.UUID


GeneratorSpec = Union[
    SequenceGenerator, RandomIntGenerator, RandomFloatGenerator, RandomStringGenerator,
    ChoiceGenerator, ChoiceByLookupGenerator, ConstantGenerator, DatetimeGenerator,
    UuidGenerator,
]


def _as_datetime(label: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise ConfigurationError(f"{label} must be a datetime, got {value!r}")


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)


# Tables

@dataclass(frozen=True)
class ColumnSpec:
    """A column and the rule used to fill it."""
    name: str
    type: ColumnType
    generator: GeneratorSpec
    nullable: bool = False
    null_probability: float = 0.0

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Column name must not be empty")
        if not isinstance(self.type, ColumnType):
            raise ConfigurationError(f"Column {self.name} has invalid type {self.type!r}")
        _check_number(f"column {self.name}", "null_probability", self.null_probability)
        if not 0.0 <= self.null_probability <= 1.0:
            raise ConfigurationError(
                f"Column {self.name} null_probability must be within [0, 1], "
                f"got {self.null_probability}"
            )

    @property
    def effective_null_probability(self) -> float:
        """Probability actually applied; non-nullable columns never get NULL."""
        return self.null_probability if self.nullable else 0.0


@dataclass(frozen=True)
class TableSpec:
    """Table definition. The first column is the ClickHouse sort key."""
    name: str
    columns: Tuple[ColumnSpec, ...]
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        if not self.name:
            raise ConfigurationError("Table name must not be empty")
        if not self.columns:
            raise ConfigurationError(f"Table {self.name} must have at least one column")
        seen = set()
        for column in self.columns:
            if column.name in seen:
                raise ConfigurationError(f"Table {self.name} has duplicate column {column.name}")
            seen.add(column.name)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def get_column(self, name: str) -> Optional[ColumnSpec]:
        """Get column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def first_sequence_column(self) -> Optional[ColumnSpec]:
        """The column consulted when resuming sequences."""
        for column in self.columns:
            if isinstance(column.generator, SequenceGenerator):
                return column
        return None


# Transformations

@dataclass(frozen=True)
class TemplateTransformation:
    """Rebuild a column from ``{column}`` placeholders and literal text."""
    column: str
    template: str
    lowercase: bool = False
    kind: ClassVar[TransformationKind] = TransformationKind.TEMPLATE

    @property
    def assigned_columns(self) -> Tuple[str, ...]:
        return (self.column,)


@dataclass(frozen=True)
class MutateTransformation:
    """Apply one random character edit to a fraction of the rows."""
    column: str
    probability: float
    operations: Tuple[MutationOperation, ...] = tuple(MutationOperation)
    kind: ClassVar[TransformationKind] = TransformationKind.MUTATE

    def __post_init__(self):
        _check_probability("mutate", self.probability)
        try:
            operations = tuple(MutationOperation(op) for op in self.operations)
        except ValueError as e:
            raise ConfigurationError(f"mutate.operations: {e}") from e
        if not operations:
            raise ConfigurationError("mutate.operations must not be empty")
        # de-duplicate, keeping the declared order
        object.__setattr__(self, "operations", tuple(dict.fromkeys(operations)))

    @property
    def assigned_columns(self) -> Tuple[str, ...]:
        return (self.column,)


@dataclass(frozen=True)
class LookupTransformation:
    """Copy ``from_table.from_column`` where ``lookup_column`` equals our ``target_column``."""
    column: str
    from_table: str
    from_column: str
    target_column: str
    lookup_column: str
    kind: ClassVar[TransformationKind] = TransformationKind.LOOKUP

    @property
    def assigned_columns(self) -> Tuple[str, ...]:
        return (self.column,)


@dataclass(frozen=True)
class SwapTransformation:
    """Exchange two columns' values on a fraction of the rows."""
    column1: str
    column2: str
    probability: float
    kind: ClassVar[TransformationKind] = TransformationKind.SWAP

    def __post_init__(self):
        _check_probability("swap", self.probability)
        if self.column1 == self.column2:
            raise ConfigurationError(f"swap needs two distinct columns, got {self.column1} twice")

    @property
    def assigned_columns(self) -> Tuple[str, ...]:
        return (self.column1, self.column2)


Transformation = Union[
    TemplateTransformation, MutateTransformation, LookupTransformation, SwapTransformation
]


@dataclass(frozen=True)
class TransformationBatch:
    """Transformations applied together; all of them read pre-batch values."""
    transformations: Tuple[Transformation, ...] = ()
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "transformations", tuple(self.transformations))

    def __len__(self) -> int:
        return len(self.transformations)


# Scenarios

@dataclass(frozen=True)
class GenerateStep:
    table: TableSpec
    row_count: int
    batches: Tuple[TransformationBatch, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "batches", tuple(self.batches))
        _check_int(f"generate step {self.table.name}", "row_count", self.row_count)
        if self.row_count < 0:
            raise ConfigurationError(f"Row count for {self.table.name} must not be negative")

    @property
    def table_name(self) -> str:
        return self.table.name


@dataclass(frozen=True)
class TransformStep:
    table_name: str
    batches: Tuple[TransformationBatch, ...]

    def __post_init__(self):
        object.__setattr__(self, "batches", tuple(self.batches))


ScenarioStep = Union[GenerateStep, TransformStep]


@dataclass(frozen=True)
class Scenario:
    """Ordered list of generate and transform steps."""
    name: str
    steps: Tuple[ScenarioStep, ...]
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))


# Settings

class GenerationSettings(BaseModel):
    """Options controlling a generation or scenario run."""

    batch_size: Optional[int] = Field(
        default=None, description="Rows per INSERT statement (None = single statement)"
    )
    create_table: bool = Field(default=True, description="Create the table if it does not exist")
    drop_first: bool = Field(default=False, description="Drop the table before creating it")
    truncate_first: bool = Field(default=False, description="Empty the table before inserting")
    resume_sequences: bool = Field(
        default=True, description="Continue sequences after the existing maximum"
    )
    optimize: bool = Field(default=True, description="Run engine maintenance after writing")
    strict_templates: bool = Field(
        default=False, description="Reject templates that reference unknown columns"
    )
    show_progress: bool = Field(default=False, description="Show a progress bar per table")

    @validator("batch_size")
    def validate_batch_size(cls, v):
        if v is not None and v <= 0:
            raise ValueError("batch_size must be positive")
        return v


# Results

@dataclass
class GenerateResult:
    """Statistics from generating one table."""
    table_name: str
    rows_inserted: int = 0
    chunks: int = 0
    duration_ms: float = 0.0
    generate_ms: float = 0.0
    optimize_ms: float = 0.0


@dataclass
class TransformResult:
    """Statistics from applying transformation batches to one table."""
    table_name: str
    batches_applied: int = 0
    duration_ms: float = 0.0
    replacement_passes: int = 0


@dataclass
class ScenarioStepResult:
    table_name: str
    generate: Optional[GenerateResult] = None
    transform: Optional[TransformResult] = None


@dataclass
class ScenarioResult:
    """Statistics from a scenario run."""
    name: str
    steps: List[ScenarioStepResult] = field(default_factory=list)
    total_rows_inserted: int = 0
    duration_ms: float = 0.0
    generate_ms: float = 0.0
    transform_ms: float = 0.0
    optimize_ms: float = 0.0
    optimized_tables: List[str] = field(default_factory=list)

    def table_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-table totals, keyed by table name."""
        stats: Dict[str, Dict[str, Any]] = {}
        for step in self.steps:
            entry = stats.setdefault(step.table_name, {"rows_inserted": 0, "batches_applied": 0})
            if step.generate:
                entry["rows_inserted"] += step.generate.rows_inserted
            if step.transform:
                entry["batches_applied"] += step.transform.batches_applied
        return stats
