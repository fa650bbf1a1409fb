"""
SQL literal escaping, identifier quoting and placeholder preparation.

Every value that reaches SQL text goes through `escape()`; every table or
column name goes through `escape_identifier()`. String escaping itself is
always delegated to the driver primitive (PyMySQL's `escape_string`, or the
connection-bound one which honours `NO_BACKSLASH_ESCAPES`).

Value kinds are classified once by `value_kind()` into a closed set:

    NULL | INTEGER | FLOAT | BOOLEAN | TEXT | SEQUENCE | RAW

and rendering is a lookup on that kind. Anything outside the set raises
`UnsupportedValueType`.

Main entry points:
- `escape(value, hint)` - Render a value as a SQL literal
- `escape_identifier(name)` - Quote table/column names with backticks
- `prepare(sql, params)` - Substitute `?`, `%s`, `%d`, `%n`, `:name` placeholders
- `where(where, params)` / `limit(limit)` - Clause helpers used by the agent
- `escape_like_pattern(pattern)` - Escape LIKE wildcards inside a pattern
"""
import decimal
import math
import re
from collections.abc import Callable, Mapping
from enum import Enum, auto
from typing import Any

from dbagent.exceptions import UnsupportedValueType, ValidationError
from pymysql.converters import escape_string as driver_escape_string

from libb import issequence

EscapeFunc = Callable[[str], str]

__all__ = [
    'Sql',
    'ValueKind',
    'value_kind',
    'escape',
    'escape_identifier',
    'prepare',
    'where',
    'limit',
    'escape_like_pattern',
]


class Sql:
    """Raw SQL expression rendered verbatim, e.g. ``Sql('NOW()')``.

    The text is never escaped or quoted. Only wrap text that the caller
    has validated; user input must never reach this class.
    """

    __slots__ = ('text',)

    def __init__(self, text: str) -> None:
        self.text = str(text)

    def to_text(self) -> str:
        return self.text

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f'Sql({self.text!r})'

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Sql) and other.text == self.text

    def __hash__(self) -> int:
        return hash(('Sql', self.text))


class ValueKind(Enum):
    """Closed set of value kinds the escaper understands."""
    NULL = auto()
    INTEGER = auto()
    FLOAT = auto()
    BOOLEAN = auto()
    TEXT = auto()
    SEQUENCE = auto()
    RAW = auto()


def value_kind(value: Any) -> ValueKind:
    """Classify a Python value into a `ValueKind`.

    `bool` is tested before `int` since it is an `int` subclass.

    Raises
        UnsupportedValueType: for any other type
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, Sql):
        return ValueKind.RAW
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float | decimal.Decimal):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, list | tuple):
        return ValueKind.SEQUENCE
    raise UnsupportedValueType(type(value).__name__)


def _quote(value: str, escape_string: EscapeFunc) -> str:
    return "'" + escape_string(value) + "'"


def _render_float(value: float | decimal.Decimal) -> str:
    # repr/str of float and Decimal never consult the process locale
    if isinstance(value, decimal.Decimal):
        if not value.is_finite():
            raise UnsupportedValueType('Decimal', f'non-finite value {value}')
        return str(value)
    if not math.isfinite(value):
        raise UnsupportedValueType('float', f'non-finite value {value!r}')
    return repr(value)


_RENDERERS: dict[ValueKind, Callable[[Any, EscapeFunc], str]] = {
    ValueKind.NULL: lambda value, esc: 'NULL',
    ValueKind.INTEGER: lambda value, esc: str(int(value)),
    ValueKind.BOOLEAN: lambda value, esc: '1' if value else '0',
    ValueKind.FLOAT: lambda value, esc: _render_float(value),
    ValueKind.TEXT: lambda value, esc: _quote(value, esc),
    ValueKind.RAW: lambda value, esc: value.to_text(),
}


# Numeric directives with optional flags, width and precision.
_NUMERIC_HINT = re.compile(r'%[-+ 0#]*\d*(?:\.\d+)?[difF]')


def _format_with_hint(value: Any, hint: str, escape_string: EscapeFunc) -> str:
    if hint == '%s':
        if value is None:
            value = ''
        elif isinstance(value, bool):
            value = '1' if value else '0'
        return _quote(str(value), escape_string)
    if not _NUMERIC_HINT.fullmatch(hint):
        raise UnsupportedValueType(type(value).__name__, f'unsupported format hint {hint!r}')
    try:
        return hint % value
    except (TypeError, ValueError) as err:
        raise UnsupportedValueType(type(value).__name__,
                                   f'cannot format with {hint!r}: {err}') from err


def escape(value: Any, hint: str | None = None,
           escape_string: EscapeFunc | None = None) -> str:
    """Render a value as an injection-safe SQL literal.

    Parameters
        value: Python value to render
        hint: Optional printf-style directive; `%s` forces a quoted string,
              numeric directives (`%d`, `%i`, `%.2f`, `%05d`, ...) format the
              value unquoted, any other directive is rejected
        escape_string: Driver escape primitive (defaults to PyMySQL's)

    Returns
        SQL fragment

    Raises
        UnsupportedValueType: value kind has no rendering rule, or unsupported hint
    """
    escape_string = escape_string or driver_escape_string
    kind = value_kind(value)

    if kind is ValueKind.RAW:
        return value.to_text()

    if kind is ValueKind.SEQUENCE:
        return ', '.join(escape(item, hint, escape_string) for item in value)

    if hint and hint.startswith('%'):
        return _format_with_hint(value, hint, escape_string)

    return _RENDERERS[kind](value, escape_string)


_IDENTIFIER_PART = re.compile(r'`(?:[^`]|``)*`|[^.]+')


def _quote_identifier_part(part: str) -> str:
    if part == '*':
        return part
    inner = part.strip().strip('`').strip()
    inner = inner.replace('``', '`').replace('`', '``')
    return f'`{inner}`'


def escape_identifier(name: Any) -> str:
    """Quote table/column names with backticks.

    `*` passes through, sequences are quoted element-wise and joined with
    `, `, dotted names are quoted per part. Quoting is idempotent:
    already-quoted names are stripped before being wrapped again.

    Examples
        >>> escape_identifier('users')
        '`users`'
        >>> escape_identifier('`users`')
        '`users`'
        >>> escape_identifier(['id', 'u.name'])
        '`id`, `u`.`name`'
        >>> escape_identifier('*')
        '*'
    """
    if isinstance(name, Sql):
        return name.to_text()
    if issequence(name) and not isinstance(name, str):
        return ', '.join(escape_identifier(n) for n in name)
    name = str(name).strip()
    if name == '*':
        return name
    parts = _IDENTIFIER_PART.findall(name) or [name]
    return '.'.join(_quote_identifier_part(part) for part in parts)


# String literals (MySQL backslash escapes and doubled quotes), quoted
# identifiers, then the placeholder forms.
_PLACEHOLDER = re.compile(r"""
    (?P<string>'(?:[^'\\]|\\.|'')*'|"(?:[^"\\]|\\.|"")*"|`(?:[^`]|``)*`)
    |(?P<percent>%%)
    |(?P<format>%[sdifFn])
    |(?P<qmark>\?)
    |(?P<named>(?<![:\w]):(?P<name>[A-Za-z_]\w*))
""", re.VERBOSE | re.DOTALL)

def prepare(sql: str, params: Any = None,
            escape_string: EscapeFunc | None = None) -> str:
    """Substitute placeholders with escaped values.

    Supported placeholders (never matched inside quoted literals):
    - `?`                    positional value, escaped by kind
    - `%s %d %i %f %F`       positional value, escaped with that directive
    - `%n`                   positional identifier
    - `:name`                named value from a mapping
    - `%%`                   literal percent sign

    Parameters
        sql: SQL text with placeholders
        params: Sequence for positional placeholders or mapping for named
        escape_string: Driver escape primitive

    Returns
        SQL text with every placeholder replaced

    Raises
        ValidationError: placeholder and parameter counts/names do not match
    """
    if params is None:
        return sql

    escape_string = escape_string or driver_escape_string
    named = isinstance(params, Mapping)
    if not named and (isinstance(params, str) or not issequence(params)):
        params = [params]
    positional = iter(()) if named else iter(params)
    used = 0

    def _next_positional(token: str) -> Any:
        nonlocal used
        if named:
            raise ValidationError(f'Positional placeholder {token!r} used with named params')
        try:
            value = next(positional)
        except StopIteration:
            raise ValidationError(f'Not enough params for placeholders in: {sql}') from None
        used += 1
        return value

    def _replace(match: re.Match) -> str:
        if match.group('string'):
            return match.group('string')
        if match.group('percent'):
            return '%'
        if match.group('qmark'):
            return escape(_next_positional('?'), None, escape_string)
        if match.group('format'):
            token = match.group('format')
            value = _next_positional(token)
            if token == '%n':
                return escape_identifier(value)
            return escape(value, token, escape_string)
        key = match.group('name')
        if not named:
            raise ValidationError(f'Named placeholder :{key} used with positional params')
        if key not in params:
            raise ValidationError(f'Missing named param: {key}')
        return escape(params[key], None, escape_string)

    result = _PLACEHOLDER.sub(_replace, sql)

    if not named and used != len(params):
        raise ValidationError(f'Expected {used} params, got {len(params)}')

    return result


def where(where: str | None = None, params: Any = None,
          escape_string: EscapeFunc | None = None) -> str:
    """Build a `WHERE` clause, preparing it when params are given."""
    if not where:
        return ''
    if params is not None:
        where = prepare(where, params, escape_string)
    return f'WHERE {where}'


def limit(limit: int | list | tuple | None) -> str:
    """Build a `LIMIT` clause from `n`, `[n]` or `(offset, n)`.
    """
    if not limit:
        return ''
    if issequence(limit) and not isinstance(limit, str):
        if len(limit) >= 2:
            return f'LIMIT {int(limit[0])}, {int(limit[1])}'
        return f'LIMIT {int(limit[0])}'
    return f'LIMIT {int(limit)}'


def escape_like_pattern(pattern: str) -> str:
    """Escape `%` and `_` inside a LIKE pattern, keeping edge wildcards.

    Examples
        >>> escape_like_pattern('%50%_off%')
        '%50\\\\%\\\\_off%'
        >>> escape_like_pattern('abc%')
        'abc%'
    """
    if not isinstance(pattern, str) or not pattern:
        return pattern
    lead = '%' if pattern.startswith('%') else ''
    trail = '%' if pattern.endswith('%') and len(pattern) > len(lead) else ''
    body = pattern[len(lead):len(pattern) - len(trail)]
    body = body.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f'{lead}{body}{trail}'
