"""Base classes shared by the per-engine dialects.

A dialect is a strategy object made of three parts:

- a ``UniformDraw`` that owns the engine's random number domain and turns
  it into unit floats and bounded integers,
- an ``ExpressionCompiler`` that turns generator specs into per-row SQL
  expressions and provides the string functions transformations need,
- the ``SqlDialect`` itself, which assembles DDL, bulk INSERT and UPDATE
  statements and answers metadata queries.

The generation and transformation engines in ``dbfab.core`` only talk to
``SqlDialect``.
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Union

from dbfab.core.database import DatabaseConfig, DatabaseConnection
from dbfab.core.escaping import quote_identifier, render_float, render_value
from dbfab.core.exceptions import (
    ConfigurationError, TemplateError, UnsupportedGeneratorError, UnsupportedTransformationError,
)
from dbfab.core.models import (
    ChoiceByLookupGenerator, ChoiceGenerator, ColumnSpec, ColumnType, ConstantGenerator,
    DatetimeGenerator, GeneratorSpec, LookupTransformation, MutateTransformation,
    MutationOperation, RandomFloatGenerator, RandomIntGenerator, RandomStringGenerator,
    SequenceGenerator, SwapTransformation, TableSpec, TemplateTransformation, Transformation,
    TransformationBatch, UuidGenerator, naive_utc,
)
from dbfab.core.utils import get_lookup_name


logger = logging.getLogger(__name__)

TEMPLATE_TOKEN = re.compile(r"\{([^{}]+)\}")

# character written by replace and insert mutations
MUTATION_CHAR = "X"


def _kind_name(obj: Any) -> str:
    kind = getattr(obj, "kind", None)
    if isinstance(kind, Enum):
        return str(kind.value)
    return type(obj).__name__


def active_transformations(batch: TransformationBatch) -> List[Transformation]:
    """Transformations that can change at least one row."""
    active = []
    for transformation in batch.transformations:
        if isinstance(transformation, (MutateTransformation, SwapTransformation)) \
                and transformation.probability <= 0:
            continue
        active.append(transformation)
    return active


class DrawTags:
    """Distinct integer tags for the random draws of one expression."""

    def __init__(self, salt: int = 0):
        self._base = salt * 1000
        self._count = 0

    def next(self) -> int:
        self._count += 1
        return self._base + self._count


class RowSource(NamedTuple):
    """FROM clause that yields one row per ordinal of a chunk."""
    ctes: List[str]
    from_clause: str
    row_index: str
    where: Optional[str] = None


@dataclass(frozen=True)
class ReplacementPass:
    """Marker for transformations executed by rebuilding the table."""
    table_name: str
    transformations: Tuple[Transformation, ...]
    strict: bool = False


Statement = Union[str, ReplacementPass]


class UniformDraw:
    """Rescales an engine's random primitive.

    ``unit`` is a float in [0, 1); ``integer`` is an integer in [0, n).
    ``tag`` distinguishes draws in engines that would otherwise merge
    identical random calls; other engines ignore it.
    """

    def unit(self, tag: int = 0) -> str:
        raise NotImplementedError

    def integer(self, n: int, tag: int = 0) -> str:
        raise NotImplementedError


class ExpressionCompiler:
    """Compiles generator specs into per-row SQL expressions."""

    dialect_name = ""
    type_map: Dict[ColumnType, str] = {}

    def __init__(self, random: UniformDraw):
        self.random = random

    # Literals and identifiers

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.dialect_name)

    def literal(self, value: Any) -> str:
        return render_value(value, self.dialect_name)

    def number(self, value: Union[int, float]) -> str:
        if isinstance(value, float):
            rendered = render_float(value, self.dialect_name)
        else:
            rendered = str(value)
        return f"({rendered})" if value < 0 else rendered

    def physical_type(self, column_type: ColumnType) -> str:
        return self.type_map[column_type]

    # Generators

    def compile_expression(self, generator: GeneratorSpec, row_index: str, salt: int = 0) -> str:
        """Return the SQL expression producing one value of ``generator``.

        ``row_index`` is the expression holding the 1-based row ordinal and
        ``salt`` keeps draws of different columns apart.
        """
        return self._compile(generator, row_index, DrawTags(salt))

    def _compile(self, generator: GeneratorSpec, row_index: str, tags: DrawTags) -> str:
        if isinstance(generator, SequenceGenerator):
            return self.sequence(generator, row_index)
        if isinstance(generator, RandomIntGenerator):
            return self.random_int(generator, tags)
        if isinstance(generator, RandomFloatGenerator):
            return self.random_float(generator, tags)
        if isinstance(generator, RandomStringGenerator):
            if generator.length == 0:
                return self.literal("")
            return self.random_string(generator.length, tags)
        if isinstance(generator, ChoiceGenerator):
            return self.choice(generator, tags)
        if isinstance(generator, ChoiceByLookupGenerator):
            if not generator.values:
                return "NULL"
            name = get_lookup_name(generator.values)
            return self.lookup_pick(name, len(generator.values), tags.next())
        if isinstance(generator, ConstantGenerator):
            return self.literal(generator.value)
        if isinstance(generator, DatetimeGenerator):
            return self.datetime(generator, tags)
        if isinstance(generator, UuidGenerator):
            return self.uuid(tags)
        raise UnsupportedGeneratorError(self.dialect_name, _kind_name(generator))

    def sequence(self, generator: SequenceGenerator, row_index: str) -> str:
        step = self.number(generator.step)
        return f"({self.number(generator.start)} - {step} + {row_index} * {step})"

    def random_int(self, generator: RandomIntGenerator, tags: DrawTags) -> str:
        if generator.width == 1:
            return self.number(generator.min_value)
        return f"({self.number(generator.min_value)} + {self.random.integer(generator.width, tags.next())})"

    def random_float(self, generator: RandomFloatGenerator, tags: DrawTags) -> str:
        low = self.number(float(generator.min_value))
        span = self.number(float(generator.max_value - generator.min_value))
        return f"round({low} + {self.random.unit(tags.next())} * {span}, {generator.precision})"

    def random_string(self, length: int, tags: DrawTags) -> str:
        raise UnsupportedGeneratorError(self.dialect_name, "randomString")

    def choice(self, generator: ChoiceGenerator, tags: DrawTags) -> str:
        values = generator.values
        if not values:
            return "NULL"
        if len(values) == 1:
            return self.literal(values[0])
        items = ", ".join(self.literal(v) for v in values)
        return self.pick(items, len(values), tags.next())

    def pick(self, items: str, n: int, tag: int) -> str:
        raise UnsupportedGeneratorError(self.dialect_name, "choice")

    def lookup_pick(self, name: str, n: int, tag: int) -> str:
        raise UnsupportedGeneratorError(self.dialect_name, "choiceByLookup")

    def lookup_definition(self, name: str, values: Tuple[Any, ...]) -> str:
        raise UnsupportedGeneratorError(self.dialect_name, "choiceByLookup")

    def datetime(self, generator: DatetimeGenerator, tags: DrawTags) -> str:
        start = epoch_seconds(generator.start)
        end = epoch_seconds(generator.end) if generator.end is not None else \
            calendar.timegm(datetime.now(timezone.utc).utctimetuple())
        span = end - start
        if span < 0:
            raise ConfigurationError("datetime.from lies in the future and no datetime.to was given")
        if span == 0:
            return self.from_epoch(str(start))
        return self.from_epoch(f"({start} + {self.random.integer(span + 1, tags.next())})")

    def from_epoch(self, seconds: str) -> str:
        raise UnsupportedGeneratorError(self.dialect_name, "datetime")

    def uuid(self, tags: DrawTags) -> str:
        raise UnsupportedGeneratorError(self.dialect_name, "uuid")

    # Columns

    def cast(self, expression: str, column: ColumnSpec) -> str:
        return f"CAST({expression} AS {self.physical_type(column.type)})"

    def null_wrap(self, expression: str, probability: float, tag: int) -> str:
        return (f"CASE WHEN {self.random.unit(tag)} < {self.number(probability)} "
                f"THEN NULL ELSE {expression} END")

    def compile_column(self, column: ColumnSpec, row_index: str, salt: int = 0) -> str:
        """Typed expression for a column, including NULL injection."""
        probability = column.effective_null_probability
        if probability >= 1:
            return "NULL"
        tags = DrawTags(salt)
        expression = self.cast(self._compile(column.generator, row_index, tags), column)
        if probability <= 0:
            return expression
        return self.null_wrap(expression, probability, tags.next())

    def hoisted_lookups(self, table: TableSpec) -> Dict[str, Tuple[Any, ...]]:
        """Lookup lists referenced by the table, keyed by their hoisted name."""
        lookups: Dict[str, Tuple[Any, ...]] = {}
        for column in table.columns:
            generator = column.generator
            if isinstance(generator, ChoiceByLookupGenerator) and generator.values \
                    and column.effective_null_probability < 1:
                lookups.setdefault(get_lookup_name(generator.values), generator.values)
        return lookups

    # String functions used by transformations

    def concat(self, parts: List[str]) -> str:
        if not parts:
            return self.literal("")
        return " || ".join(parts)

    def text_cast(self, expression: str) -> str:
        return f"CAST({expression} AS TEXT)"

    def lower(self, expression: str) -> str:
        return f"lower({expression})"

    def length(self, expression: str) -> str:
        return f"length({expression})"

    def substr(self, expression: str, start: str, length: Optional[str] = None) -> str:
        if length is None:
            return f"substr({expression}, {start})"
        return f"substr({expression}, {start}, {length})"

    def position(self, draw: str, expression: str) -> str:
        """1-based offset in [1, length] from a unit draw."""
        return f"(CAST({draw} * {self.length(expression)} AS INTEGER) + 1)"


def epoch_seconds(value: datetime) -> int:
    return calendar.timegm(naive_utc(value).timetuple())


class SqlDialect:
    """Per-engine strategy used by the generation and transformation engines."""

    name = ""
    label = ""
    compiler_class = ExpressionCompiler
    random_class = UniformDraw
    # physical row identifier used to key per-row draws in UPDATE statements
    row_id = ""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config
        self.random = self.random_class()
        self.compiler = self.compiler_class(self.random)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def quote_identifier(self, name: str) -> str:
        return quote_identifier(name, self.name)

    def table_ref(self, name: str) -> str:
        """Fully qualified, quoted table name."""
        return self.quote_identifier(name)

    def render_value(self, value: Any) -> str:
        return render_value(value, self.name)

    def prepare(self, connection: DatabaseConnection) -> None:
        """Hook run right after connecting."""

    # DDL

    def column_definition(self, column: ColumnSpec) -> str:
        definition = f"{self.quote_identifier(column.name)} {self.compiler.physical_type(column.type)}"
        if not column.nullable:
            definition += " NOT NULL"
        return definition

    def create_table_sql(self, table: TableSpec) -> str:
        columns = ", ".join(self.column_definition(c) for c in table.columns)
        return f"CREATE TABLE IF NOT EXISTS {self.table_ref(table.name)} ({columns})"

    def drop_table_sql(self, table_name: str) -> str:
        return f"DROP TABLE IF EXISTS {self.table_ref(table_name)}"

    def truncate_table_sql(self, table_name: str) -> str:
        return f"TRUNCATE TABLE {self.table_ref(table_name)}"

    def optimize_statements(self, table_name: str) -> List[str]:
        return []

    # Generation

    def row_source(self, row_count: int, origin: int = 0) -> RowSource:
        raise NotImplementedError

    def with_clause(self, ctes: List[str]) -> str:
        return f"WITH {', '.join(ctes)} " if ctes else ""

    def bulk_insert_sql(self, table: TableSpec, row_count: int, origin: int = 0) -> str:
        """Single INSERT .. SELECT producing ``row_count`` rows.

        Row ordinals run from ``origin + 1`` to ``origin + row_count``.
        """
        source = self.row_source(row_count, origin)
        ctes = list(source.ctes)
        from_clause = source.from_clause
        for name, values in self.compiler.hoisted_lookups(table).items():
            ctes.append(self.compiler.lookup_definition(name, values))
            from_clause += f" CROSS JOIN {name}"

        columns = ", ".join(self.quote_identifier(c.name) for c in table.columns)
        select_list = ", ".join(
            self.compiler.compile_column(column, source.row_index, salt=position)
            for position, column in enumerate(table.columns, 1)
        )
        where = f" WHERE {source.where}" if source.where else ""
        return (f"{self.with_clause(ctes)}INSERT INTO {self.table_ref(table.name)} ({columns}) "
                f"SELECT {select_list} FROM {from_clause}{where}")

    # Metadata

    def count_rows_sql(self, table_name: str) -> str:
        return f"SELECT COUNT(*) FROM {self.table_ref(table_name)}"

    def max_value_sql(self, table_name: str, column: str, use_min: bool = False) -> str:
        func = "MIN" if use_min else "MAX"
        return f"SELECT {func}({self.quote_identifier(column)}) FROM {self.table_ref(table_name)}"

    def select_rows_sql(self, table_name: str, limit: int = 100, order_by: Optional[str] = None) -> str:
        sql = f"SELECT * FROM {self.table_ref(table_name)}"
        if order_by:
            sql += f" ORDER BY {self.quote_identifier(order_by)}"
        return f"{sql} LIMIT {int(limit)}"

    def columns_query(self) -> Tuple[str, Dict[str, Any]]:
        raise NotImplementedError

    def get_columns(self, connection: DatabaseConnection, table_name: str) -> List[str]:
        query, params = self.columns_query()
        rows = connection.execute_query(query, dict(params, name=table_name))
        return [row[0] for row in rows]

    def tables_query(self) -> Tuple[str, Dict[str, Any]]:
        raise NotImplementedError

    def list_tables(self, connection: DatabaseConnection) -> List[str]:
        query, params = self.tables_query()
        return [row[0] for row in connection.execute_query(query, params)]

    def get_table_size(self, connection: DatabaseConnection, table_name: str) -> int:
        raise NotImplementedError

    # Transformations

    def column_ref(self, table_name: str, column: str) -> str:
        """Reference to a target-table column inside an UPDATE."""
        return f"{self.quote_identifier(table_name)}.{self.quote_identifier(column)}"

    def template_expression(self, table_name: str, transformation: TemplateTransformation,
                            columns: List[str], strict: bool,
                            ref: Callable[[str], str]) -> str:
        pieces: List[Tuple[bool, str]] = []
        unknown = []
        position = 0
        template = transformation.template
        for match in TEMPLATE_TOKEN.finditer(template):
            if match.start() > position:
                pieces.append((False, template[position:match.start()]))
            name = match.group(1)
            if name in columns:
                pieces.append((True, name))
            else:
                unknown.append(name)
                pieces.append((False, match.group(0)))
            position = match.end()
        if position < len(template):
            pieces.append((False, template[position:]))

        if unknown:
            if strict:
                raise TemplateError(table_name, template, unknown)
            logger.warning(
                f"Template for {table_name}.{transformation.column} keeps unknown "
                f"placeholders as text: {', '.join(unknown)}"
            )

        parts: List[str] = []
        literal = ""
        for is_column, value in pieces:
            if is_column:
                if literal:
                    parts.append(self.compiler.literal(literal))
                    literal = ""
                parts.append(self.compiler.text_cast(ref(value)))
            else:
                literal += value
        if literal:
            parts.append(self.compiler.literal(literal))

        expression = self.compiler.concat(parts)
        if transformation.lowercase:
            expression = self.compiler.lower(expression)
        return expression

    def mutate_expression(self, column: str, transformation: MutateTransformation,
                          gate: Optional[str], operation: Optional[str], position: str) -> str:
        """One character edit driven by pre-bound unit draws.

        ``gate`` is None for unconditional mutations and ``operation`` is
        None when only one operation is allowed.
        """
        compiler = self.compiler
        offset = compiler.position(position, column)
        head = compiler.substr(column, "1", f"{offset} - 1")
        mark = compiler.literal(MUTATION_CHAR)
        edits = []
        for op in transformation.operations:
            if op == MutationOperation.REPLACE:
                edits.append(compiler.concat([head, mark, compiler.substr(column, f"{offset} + 1")]))
            elif op == MutationOperation.DELETE:
                edits.append(compiler.concat([head, compiler.substr(column, f"{offset} + 1")]))
            else:
                edits.append(compiler.concat([head, mark, compiler.substr(column, offset)]))

        if operation is None or len(edits) == 1:
            edited = edits[0]
        else:
            count = len(edits)
            branches = " ".join(
                f"WHEN {operation} < {compiler.number(i / count)} THEN {edit}"
                for i, edit in enumerate(edits[:-1], 1)
            )
            edited = f"CASE {branches} ELSE {edits[-1]} END"

        conditions = [f"{column} IS NOT NULL", f"{compiler.length(column)} > 0"]
        if gate is not None:
            conditions.insert(0, f"{gate} < {compiler.number(transformation.probability)}")
        return f"CASE WHEN {' AND '.join(conditions)} THEN {edited} ELSE {column} END"

    def mutate_draw_count(self, transformation: MutateTransformation) -> Tuple[bool, bool]:
        """Whether a mutation needs a gate draw and an operation draw."""
        return transformation.probability < 1, len(transformation.operations) > 1

    def lookup_expression(self, table_name: str, transformation: LookupTransformation,
                          alias: str) -> str:
        q = self.quote_identifier
        return (f"(SELECT {alias}.{q(transformation.from_column)} "
                f"FROM {self.table_ref(transformation.from_table)} AS {alias} "
                f"WHERE {alias}.{q(transformation.lookup_column)} = "
                f"{self.column_ref(table_name, transformation.target_column)} LIMIT 1)")

    def transformation_statements(self, table_name: str, batch: TransformationBatch,
                                  columns: List[str], strict: bool = False) -> List[Statement]:
        """Statements applying one batch with pre-batch semantics.

        The default is a single UPDATE. Per-row draws are computed once in a
        materialized CTE keyed by the physical row id, so every expression
        that shares a draw sees the same value and every SET expression
        reads pre-batch values.
        """
        draws: List[str] = []

        def draw() -> str:
            name = f"_r{len(draws)}"
            draws.append(name)
            return f"_d.{name}"

        def ref(column: str) -> str:
            return self.column_ref(table_name, column)

        assignments: List[Tuple[str, str]] = []
        for index, transformation in enumerate(active_transformations(batch)):
            if isinstance(transformation, TemplateTransformation):
                assignments.append((transformation.column, self.template_expression(
                    table_name, transformation, columns, strict, ref)))
            elif isinstance(transformation, MutateTransformation):
                needs_gate, needs_operation = self.mutate_draw_count(transformation)
                gate = draw() if needs_gate else None
                operation = draw() if needs_operation else None
                assignments.append((transformation.column, self.mutate_expression(
                    ref(transformation.column), transformation, gate, operation, draw())))
            elif isinstance(transformation, LookupTransformation):
                assignments.append((transformation.column, self.lookup_expression(
                    table_name, transformation, f"_lk{index}")))
            elif isinstance(transformation, SwapTransformation):
                first, second = ref(transformation.column1), ref(transformation.column2)
                if transformation.probability >= 1:
                    assignments.append((transformation.column1, second))
                    assignments.append((transformation.column2, first))
                else:
                    condition = f"{draw()} < {self.compiler.number(transformation.probability)}"
                    assignments.append((transformation.column1,
                                        f"CASE WHEN {condition} THEN {second} ELSE {first} END"))
                    assignments.append((transformation.column2,
                                        f"CASE WHEN {condition} THEN {first} ELSE {second} END"))
            else:
                raise UnsupportedTransformationError(self.name, _kind_name(transformation))

        if not assignments:
            return []

        target = self.table_ref(table_name)
        set_clause = ", ".join(f"{self.quote_identifier(c)} = {e}" for c, e in assignments)
        if not draws:
            return [f"UPDATE {target} SET {set_clause}"]

        unit = self.random.unit()
        select_list = ", ".join([f"{self.row_id} AS _rid"] + [f"{unit} AS {name}" for name in draws])
        return [
            f"WITH _d AS MATERIALIZED (SELECT {select_list} FROM {target}) "
            f"UPDATE {target} SET {set_clause} FROM _d "
            f"WHERE {target}.{self.row_id} = _d._rid"
        ]

    # Table replacement, for engines without per-row atomic UPDATE

    def create_shadow_sql(self, table_name: str, shadow_name: str) -> str:
        raise NotImplementedError(f"{self.name} does not rebuild tables")

    def populate_shadow_sql(self, table_name: str, shadow_name: str, columns: List[str],
                            transformations: Tuple[Transformation, ...], strict: bool = False) -> str:
        raise NotImplementedError(f"{self.name} does not rebuild tables")

    def exchange_tables_sql(self, table_name: str, shadow_name: str, old_name: str) -> str:
        raise NotImplementedError(f"{self.name} does not rebuild tables")

