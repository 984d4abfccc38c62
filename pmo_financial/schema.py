"""Declarative sheet schemas.

A ``SheetSchema`` is the single description of a sheet's layout: an ordered
list of ``Column`` entries whose position is the column index. The same
descriptor is used to decode raw rows into typed values and to encode records
back into rows, so readers and writers cannot drift apart.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from .dates import parse_datetime
from .errors import DecodeError, ValidationError

KINDS = ("str", "float", "int", "bool", "datetime")

R = TypeVar("R", bound="Record")


def column_letter(index: int) -> str:
    """Convert a zero-based column index into spreadsheet letters (0 -> A, 26 -> AA)."""

    if index < 0:
        raise ValueError("Column index must be non-negative")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def column_index(letters: str) -> int:
    """Inverse of :func:`column_letter`."""

    index = 0
    for char in letters.upper():
        if not "A" <= char <= "Z":
            raise ValueError(f"Invalid column letters: {letters}")
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


@dataclass(frozen=True)
class Column:
    """A single typed column."""

    name: str
    header: str
    kind: str = "str"
    required: bool = False
    default: Any = None
    choices: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ValueError(f"Unsupported column kind '{self.kind}' for {self.name}")


class SheetSchema:
    """Ordered column layout of one sheet."""

    def __init__(self, sheet: str, columns: Sequence[Column], id_prefix: Optional[str] = None) -> None:
        if not columns:
            raise ValueError("A schema needs at least one column")
        names = [column.name for column in columns]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate column names in schema for {sheet}")
        self.sheet = sheet
        self.columns: Tuple[Column, ...] = tuple(columns)
        self.id_prefix = id_prefix
        self._index = {column.name: position for position, column in enumerate(self.columns)}

    @property
    def id_column(self) -> Column:
        return self.columns[0]

    @property
    def headers(self) -> List[str]:
        return [column.header for column in self.columns]

    @property
    def last_letter(self) -> str:
        return column_letter(len(self.columns) - 1)

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"{self.sheet} has no column '{name}'") from None

    def letter(self, name: str) -> str:
        return column_letter(self.index(name))

    def column(self, name: str) -> Column:
        return self.columns[self.index(name)]

    def column_map(self) -> Dict[str, int]:
        return dict(self._index)

    def is_blank(self, row: Sequence[Any]) -> bool:
        """Rows without an identifier are treated as empty filler, not as records."""

        return not row or row[0] in (None, "")

    def decode(self, row: Sequence[Any]) -> Dict[str, Any]:
        """Decode a raw row into ``{column name: typed value}``.

        Raises:
            DecodeError: if a cell cannot be converted to its column kind, a
                required cell is empty, or a value is outside its choices.
        """

        values: Dict[str, Any] = {}
        for position, column in enumerate(self.columns):
            raw = row[position] if position < len(row) else ""
            values[column.name] = self.decode_cell(column, raw)
        return values

    def encode(self, values: Mapping[str, Any]) -> List[Any]:
        """Encode a mapping of column values into a full row in column order."""

        return [self._encode_cell(column, values.get(column.name)) for column in self.columns]

    def encode_updates(self, values: Mapping[str, Any]) -> Dict[int, Any]:
        """Encode a partial mapping into ``{column index: cell}`` for in-place writes."""

        return {self.index(name): self._encode_cell(self.column(name), value) for name, value in values.items()}

    def decode_cell(self, column: Column, raw: Any) -> Any:
        if raw is None or (isinstance(raw, str) and raw.strip() == ""):
            if column.required:
                raise DecodeError(self.sheet, column.header, raw, "required value missing")
            return column.default

        if column.kind == "str":
            value: Any = str(raw).strip() if isinstance(raw, str) else str(raw)
        elif column.kind in ("float", "int"):
            value = self._decode_number(column, raw)
        elif column.kind == "bool":
            value = self._decode_bool(column, raw)
        else:
            try:
                value = parse_datetime(raw)
            except ValueError as exc:
                raise DecodeError(self.sheet, column.header, raw, f"not an ISO date: {exc}") from exc

        if column.choices and value not in column.choices:
            raise DecodeError(self.sheet, column.header, raw, f"expected one of {', '.join(column.choices)}")
        return value

    def _decode_number(self, column: Column, raw: Any) -> Any:
        if isinstance(raw, bool):
            raise DecodeError(self.sheet, column.header, raw, "expected a number")
        if isinstance(raw, (int, float)):
            number = float(raw)
        else:
            try:
                number = float(str(raw).replace(",", "").strip())
            except ValueError as exc:
                raise DecodeError(self.sheet, column.header, raw, "expected a number") from exc
        if column.kind == "int":
            if not number.is_integer():
                raise DecodeError(self.sheet, column.header, raw, "expected an integer")
            return int(number)
        return number

    def _decode_bool(self, column: Column, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().upper()
        if text == "TRUE":
            return True
        if text == "FALSE":
            return False
        raise DecodeError(self.sheet, column.header, raw, "expected TRUE or FALSE")

    @staticmethod
    def _encode_cell(column: Column, value: Any) -> Any:
        if value is None:
            return ""
        if column.kind == "bool":
            return "TRUE" if value else "FALSE"
        if column.kind == "datetime":
            return parse_datetime(value).isoformat()
        if column.kind == "float":
            return float(value)
        if column.kind == "int":
            return int(value)
        return str(value)


class Record:
    """Mixin for dataclass records stored in a sheet described by ``SCHEMA``.

    Dataclass field names must match the schema's column names.
    """

    SCHEMA: ClassVar[SheetSchema]

    @classmethod
    def from_row(cls: Type[R], row: Sequence[Any]) -> R:
        return cls(**cls.SCHEMA.decode(row))  # type: ignore[call-arg]

    def to_row(self) -> List[Any]:
        return self.SCHEMA.encode(self._values())

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for name, value in self._values().items():
            payload[name] = value.isoformat() if isinstance(value, datetime) else value
        return payload

    def _values(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}  # type: ignore[arg-type]


def coerce_input(schema: SheetSchema, values: Mapping[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    """Validate caller supplied field values against ``schema`` column kinds.

    ``None`` clears optional fields. Raises ``ValidationError`` for unknown
    fields or values that do not fit the column.
    """

    allowed_names = set(allowed)
    unknown = sorted(set(values) - allowed_names)
    if unknown:
        raise ValidationError(f"Unknown or read-only field(s): {', '.join(unknown)}")
    coerced: Dict[str, Any] = {}
    for name, value in values.items():
        column = schema.column(name)
        if value is None and not column.required:
            coerced[name] = column.default
            continue
        try:
            coerced[name] = schema.decode_cell(column, value)
        except DecodeError as exc:
            raise ValidationError(f"Invalid value for {name}: {exc.reason}") from exc
    return coerced


def decode_rows(schema: SheetSchema, rows: Iterable[Sequence[Any]], record_cls: Type[R], logger: Any) -> List[R]:
    """Decode data rows, skipping blank filler rows and logging malformed ones."""

    records: List[R] = []
    for row in rows:
        if schema.is_blank(row):
            continue
        try:
            records.append(record_cls.from_row(row))
        except DecodeError as exc:
            logger.warning("Skipping malformed row in %s: %s", schema.sheet, exc)
    return records
