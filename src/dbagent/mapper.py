"""
Result mapping: cast fetched values to Python types by declared column type.

The mapper holds a per-connection type directory

    {table: {column: ColumnDescriptor}}

built once from `information_schema.columns` and applies it to every
fetched row. The directory is immutable; a rebuild publishes a new object
by replacing the reference, so concurrent readers always see a complete
snapshot.

Casting rules by declared type:
- int family (int, bigint, smallint, mediumint, integer, serial, bigserial): int
- float family (float, double, double precision, decimal, real, numeric): float
- boolean: True iff the value equals the driver's true marker
- tinyint/bit with display width 1 and `bool_narrow`: 0/1 become booleans
- tinyint otherwise: int
- anything else: unchanged
"""
import decimal
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

__all__ = [
    'ColumnDescriptor',
    'CastOptions',
    'TypeDirectory',
    'EMPTY_DIRECTORY',
    'parse_display_width',
    'build_directory',
    'cast_value',
    'cast_row',
    'Mapper',
    'COLUMNS_QUERY',
]

INT_TYPES = frozenset({'int', 'bigint', 'smallint', 'mediumint', 'integer',
                       'serial', 'bigserial'})
FLOAT_TYPES = frozenset({'float', 'double', 'double precision', 'decimal',
                         'real', 'numeric'})
BOOLEAN_TYPE = 'boolean'
TINYINT_TYPE = 'tinyint'
BIT_TYPE = 'bit'

COLUMNS_QUERY = """
select
    table_name as table_name,
    column_name as column_name,
    data_type as data_type,
    is_nullable as is_nullable,
    numeric_precision as numeric_precision,
    column_type as column_type
from
    information_schema.columns
where
    table_schema = ?
"""

TypeDirectory = Mapping[str, Mapping[str, 'ColumnDescriptor']]

EMPTY_DIRECTORY: TypeDirectory = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """Declared type information for one table column."""
    table: str
    column: str
    type: str
    length: int | None = None
    nullable: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'type', self.type.strip().lower())


@dataclass(frozen=True, slots=True)
class CastOptions:
    """Mapper-wide cast configuration.

    bool_narrow: convert tinyint(1)/bit(1) values 0/1 to booleans
    boolean_true: raw value the driver returns for a true `boolean` column
    """
    bool_narrow: bool = False
    boolean_true: Any = 't'


_DISPLAY_WIDTH = re.compile(r'^\s*(?P<type>[a-z ]+?)\s*\(\s*(?P<width>\d+)\s*\)', re.IGNORECASE)


def parse_display_width(column_type: str | None, data_type: str | None = None) -> int | None:
    """Extract the display width from a column type such as `tinyint(1)`.

    Parameters
        column_type: Full column type text, e.g. `int(10) unsigned`
        data_type: Expected base type; when given the prefix must match

    Returns
        The width, or None when absent or malformed

    Examples
        >>> parse_display_width('tinyint(1)')
        1
        >>> parse_display_width('INT ( 11 ) unsigned', 'int')
        11
        >>> parse_display_width('tinyint') is None
        True
    """
    if not isinstance(column_type, str):
        return None
    match = _DISPLAY_WIDTH.match(column_type)
    if match is None:
        return None
    if data_type and match.group('type').strip().lower() != data_type.strip().lower():
        return None
    return int(match.group('width'))


def _is_integer_family(data_type: str) -> bool:
    return data_type.endswith('int') or data_type in INT_TYPES


def _field(row: Mapping[str, Any], name: str) -> Any:
    # information_schema column names come back upper-case on MySQL 8
    if name in row:
        return row[name]
    return row.get(name.upper())


def _column_length(data_type: str, row: Mapping[str, Any]) -> int | None:
    if data_type == BIT_TYPE:
        precision = _field(row, 'numeric_precision')
        try:
            return int(precision) if precision is not None else None
        except (TypeError, ValueError):
            return None
    if _is_integer_family(data_type):
        return parse_display_width(_field(row, 'column_type'), data_type)
    return None


def build_directory(rows: Iterable[Mapping[str, Any]]) -> TypeDirectory:
    """Build an immutable type directory from schema metadata rows.

    Each row provides `table_name`, `column_name`, `data_type`,
    `is_nullable`, `numeric_precision` and `column_type` (lower- or
    upper-case keys).
    """
    directory: dict[str, dict[str, ColumnDescriptor]] = {}
    for row in rows:
        table = _field(row, 'table_name')
        column = _field(row, 'column_name')
        data_type = str(_field(row, 'data_type') or '').strip().lower()
        is_nullable = _field(row, 'is_nullable')
        if isinstance(is_nullable, str):
            nullable = is_nullable.strip().upper() == 'YES'
        else:
            nullable = bool(is_nullable)
        directory.setdefault(table, {})[column] = ColumnDescriptor(
            table=table,
            column=column,
            type=data_type,
            length=_column_length(data_type, row),
            nullable=nullable,
        )
    logger.debug(f'Built type directory for {len(directory)} tables')
    return MappingProxyType({t: MappingProxyType(cols) for t, cols in directory.items()})


def _to_int(value: Any) -> int:
    if isinstance(value, bytes | bytearray):
        value = value.decode()
    if isinstance(value, str):
        value = value.strip()
        try:
            return int(value)
        except ValueError:
            return int(decimal.Decimal(value))
    return int(value)


def _to_float(value: Any) -> float:
    if isinstance(value, bytes | bytearray):
        value = value.decode()
    return float(value)


def _bit_text(value: Any) -> str:
    # PyMySQL returns BIT columns as big-endian bytes
    if isinstance(value, bytes | bytearray):
        return str(int.from_bytes(value, 'big'))
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)


def _cast_narrow(value: Any, descriptor: ColumnDescriptor) -> Any:
    if descriptor.type == TINYINT_TYPE:
        value = _to_int(value)
        if value in {0, 1}:
            return bool(value)
        return value
    value = _bit_text(value)
    if value in {'0', '1'}:
        return value == '1'
    return value


def cast_value(value: Any, descriptor: ColumnDescriptor,
               options: CastOptions | None = None) -> Any:
    """Cast one raw value according to its column descriptor.

    A None value is never coerced. Values that cannot be parsed as their
    declared numeric type are returned unchanged.
    """
    if value is None:
        if not descriptor.nullable:
            logger.warning(f'NULL in non-nullable column {descriptor.table}.{descriptor.column}')
        return None

    options = options or CastOptions()
    data_type = descriptor.type

    try:
        if data_type in INT_TYPES:
            return _to_int(value)
        if data_type in FLOAT_TYPES:
            return _to_float(value)
        if data_type == BOOLEAN_TYPE:
            return value == options.boolean_true
        if data_type in {TINYINT_TYPE, BIT_TYPE}:
            if options.bool_narrow and descriptor.length == 1:
                return _cast_narrow(value, descriptor)
            if data_type == TINYINT_TYPE:
                return _to_int(value)
    except (TypeError, ValueError, ArithmeticError) as err:
        logger.warning(f'Could not cast {descriptor.table}.{descriptor.column} '
                       f'value {value!r} as {data_type}: {err}')
        return value

    return value


def cast_row(table: str, row: Mapping[str, Any], directory: TypeDirectory,
             options: CastOptions | None = None) -> Mapping[str, Any]:
    """Cast every field of a row that has a descriptor in the directory.

    Fields without a descriptor are left untouched; field order and set
    are preserved. Rows of tables absent from the directory are returned
    as-is.
    """
    columns = directory.get(table) if table else None
    if not columns or not row:
        return row
    mapped = row.copy() if hasattr(row, 'copy') else dict(row)
    for name, value in row.items():
        descriptor = columns.get(name)
        if descriptor is not None:
            mapped[name] = cast_value(value, descriptor, options)
    return mapped


class Mapper:
    """Per-connection type mapper.

    Holds the cast options and a reference to the current type directory.
    `set_directory()` and `reset()` replace the reference; they never
    mutate a published directory.
    """

    def __init__(self, options: CastOptions | None = None) -> None:
        self.options = options or CastOptions()
        self._directory: TypeDirectory = EMPTY_DIRECTORY

    @property
    def directory(self) -> TypeDirectory:
        return self._directory

    @property
    def is_built(self) -> bool:
        return bool(self._directory)

    def set_directory(self, directory: TypeDirectory | Mapping) -> None:
        """Publish a new directory.
        """
        if not isinstance(directory, MappingProxyType):
            directory = MappingProxyType({
                table: MappingProxyType(dict(columns))
                for table, columns in directory.items()
                })
        self._directory = directory

    def load(self, rows: Iterable[Mapping[str, Any]]) -> TypeDirectory:
        """Build a directory from schema metadata rows and publish it.
        """
        directory = build_directory(rows)
        self._directory = directory
        return directory

    def reset(self) -> None:
        self._directory = EMPTY_DIRECTORY

    def cast(self, value: Any, descriptor: ColumnDescriptor) -> Any:
        return cast_value(value, descriptor, self.options)

    def map_row(self, table: str, row: Mapping[str, Any]) -> Mapping[str, Any]:
        return cast_row(table, row, self._directory, self.options)

    def map_rows(self, table: str, rows: list[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Cast a batch of rows against a single directory snapshot.
        """
        directory = self._directory
        if not rows or not table or table not in directory:
            return rows
        return [cast_row(table, row, directory, self.options) for row in rows]
