"""Row-oriented storage contract backing every service.

``RowStore`` exposes four primitives (read a range, append rows, write cells
in place, delete a row) and builds ID lookup, in-place updates and sequential
ID generation on top of them. ``InMemoryRowStore`` implements the primitives
with plain lists and backs tests and local runs.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import RowStoreError
from .schema import SheetSchema, column_index

LOGGER = logging.getLogger(__name__)

_RANGE_RE = re.compile(
    r"^(?:'(?P<quoted>(?:[^']|'')+)'|(?P<plain>[^!]+))"
    r"(?:!(?P<start_col>[A-Za-z]+)(?P<start_row>\d+)?(?::(?P<end_col>[A-Za-z]+)(?P<end_row>\d+)?)?)?$"
)


@dataclass
class RowMatch:
    """A located row. ``row_number`` is 1-based and includes the header row."""

    row_number: int
    row: List[Any]


@dataclass(frozen=True)
class A1Range:
    sheet: str
    start_col: int = 0
    end_col: Optional[int] = None
    start_row: int = 1
    end_row: Optional[int] = None


def quote_sheet(sheet: str) -> str:
    return "'" + sheet.replace("'", "''") + "'"


def parse_range(range_name: str) -> A1Range:
    """Parse ``'Sheet Name'!A2:X`` style references.

    Raises:
        RowStoreError: if the reference is not valid A1 notation.
    """

    match = _RANGE_RE.match(range_name.strip())
    if not match:
        raise RowStoreError(f"Unable to parse range: {range_name}")
    sheet = match.group("quoted")
    sheet = sheet.replace("''", "'") if sheet is not None else match.group("plain")
    start_col = column_index(match.group("start_col")) if match.group("start_col") else 0
    end_letters = match.group("end_col")
    if end_letters:
        end_col: Optional[int] = column_index(end_letters)
    elif match.group("start_col"):
        end_col = start_col
    else:
        end_col = None
    start_row = int(match.group("start_row")) if match.group("start_row") else 1
    end_row = int(match.group("end_row")) if match.group("end_row") else None
    return A1Range(sheet=sheet, start_col=start_col, end_col=end_col, start_row=start_row, end_row=end_row)


def schema_range(schema: SheetSchema) -> str:
    return f"{quote_sheet(schema.sheet)}!A:{schema.last_letter}"


def _id_suffix(value: Any, prefix: str) -> Optional[int]:
    text = str(value or "")
    marker = f"{prefix}-"
    if not text.startswith(marker):
        return None
    digits = text[len(marker):]
    return int(digits) if digits.isdigit() else None


class RowStore(ABC):
    """Abstract async row store.

    Concrete stores implement the four primitives; everything else is derived.
    """

    @abstractmethod
    async def read_range(self, range_name: str) -> List[List[Any]]:
        """Return the rows covered by ``range_name`` (header row included for full-column ranges)."""

    @abstractmethod
    async def append_rows(self, range_name: str, rows: Sequence[Sequence[Any]]) -> int:
        """Append rows after the last used row and return the first written row number."""

    @abstractmethod
    async def write_cells(self, sheet: str, row_number: int, cells: Mapping[int, Any]) -> None:
        """Overwrite ``{column index: value}`` cells of one row in place."""

    @abstractmethod
    async def delete_row(self, sheet: str, row_number: int) -> None:
        """Remove a row, shifting the following rows up."""

    async def read_sheet(self, sheet: str) -> List[List[Any]]:
        return await self.read_range(quote_sheet(sheet))

    async def read_data_rows(self, schema: SheetSchema) -> List[List[Any]]:
        """Return all data rows of ``schema``'s sheet, header excluded."""

        rows = await self.read_range(schema_range(schema))
        return rows[1:]

    async def append_record(self, schema: SheetSchema, row: Sequence[Any]) -> int:
        return await self.append_rows(schema_range(schema), [row])

    async def find_row_by_id(self, sheet: str, id_header: str, id_value: str) -> Optional[RowMatch]:
        """Locate a row by the value in the column titled ``id_header``."""

        rows = await self.read_sheet(sheet)
        if not rows:
            return None
        try:
            id_index = list(rows[0]).index(id_header)
        except ValueError:
            return None
        for offset, row in enumerate(rows[1:], start=2):
            if id_index < len(row) and str(row[id_index]) == str(id_value):
                return RowMatch(row_number=offset, row=list(row))
        return None

    async def find_record(self, schema: SheetSchema, record_id: str) -> Optional[RowMatch]:
        return await self.find_row_by_id(schema.sheet, schema.id_column.header, record_id)

    async def update_row(
        self,
        sheet: str,
        id_header: str,
        id_value: str,
        field_map: Mapping[str, Any],
        column_map: Mapping[str, int],
    ) -> bool:
        """Write ``field_map`` values into the row identified by ``id_value``.

        Returns ``False`` when no row carries that identifier.
        """

        match = await self.find_row_by_id(sheet, id_header, id_value)
        if match is None:
            return False
        cells = {column_map[name]: value for name, value in field_map.items() if name in column_map}
        if cells:
            await self.write_cells(sheet, match.row_number, cells)
        return True

    async def update_record(self, schema: SheetSchema, record_id: str, values: Mapping[str, Any]) -> bool:
        """Schema-aware variant of :meth:`update_row`; values are encoded per column kind."""

        match = await self.find_record(schema, record_id)
        if match is None:
            return False
        await self.write_cells(schema.sheet, match.row_number, schema.encode_updates(values))
        return True

    async def generate_next_id(self, sheet: str, id_header: str, prefix: str) -> str:
        """Return ``PREFIX-NNN`` one past the highest existing suffix.

        IDs with another prefix or a non-numeric suffix are ignored. Suffixes
        are zero padded to at least three digits.
        """

        rows = await self.read_sheet(sheet)
        if not rows:
            return f"{prefix}-001"
        try:
            id_index = list(rows[0]).index(id_header)
        except ValueError:
            return f"{prefix}-001"
        highest = 0
        for row in rows[1:]:
            if id_index >= len(row):
                continue
            suffix = _id_suffix(row[id_index], prefix)
            if suffix is not None and suffix > highest:
                highest = suffix
        return f"{prefix}-{highest + 1:03d}"

    async def next_id(self, schema: SheetSchema) -> str:
        if not schema.id_prefix:
            raise ValueError(f"{schema.sheet} does not generate identifiers")
        return await self.generate_next_id(schema.sheet, schema.id_column.header, schema.id_prefix)


class InMemoryRowStore(RowStore):
    """List-backed store. Sheets must exist (via ``schemas`` or :meth:`add_sheet`) before use."""

    def __init__(self, schemas: Iterable[SheetSchema] = ()) -> None:
        self.sheets: Dict[str, List[List[Any]]] = {}
        for schema in schemas:
            self.add_sheet(schema.sheet, schema.headers)

    def add_sheet(self, sheet: str, headers: Sequence[Any]) -> None:
        self.sheets[sheet] = [list(headers)]

    def seed(self, schema: SheetSchema, rows: Iterable[Sequence[Any]]) -> None:
        """Synchronously append raw rows; intended for fixtures."""

        target = self._sheet(schema.sheet)
        target.extend(list(row) for row in rows)

    def _sheet(self, sheet: str) -> List[List[Any]]:
        try:
            return self.sheets[sheet]
        except KeyError:
            raise RowStoreError(f"Unable to parse range: sheet '{sheet}' does not exist", status=400) from None

    @staticmethod
    def _bounds(parsed: A1Range, rows: List[List[Any]]) -> Tuple[int, int]:
        first = parsed.start_row - 1
        last = len(rows) if parsed.end_row is None else min(parsed.end_row, len(rows))
        return first, last

    async def read_range(self, range_name: str) -> List[List[Any]]:
        parsed = parse_range(range_name)
        rows = self._sheet(parsed.sheet)
        first, last = self._bounds(parsed, rows)
        selected: List[List[Any]] = []
        for row in rows[first:last]:
            end = None if parsed.end_col is None else parsed.end_col + 1
            selected.append(list(row[parsed.start_col:end]))
        return selected

    async def append_rows(self, range_name: str, rows: Sequence[Sequence[Any]]) -> int:
        parsed = parse_range(range_name)
        target = self._sheet(parsed.sheet)
        first_row = len(target) + 1
        for row in rows:
            target.append([""] * parsed.start_col + list(row))
        LOGGER.debug("Appended %d row(s) to %s at row %d", len(rows), parsed.sheet, first_row)
        return first_row

    async def write_cells(self, sheet: str, row_number: int, cells: Mapping[int, Any]) -> None:
        rows = self._sheet(sheet)
        if row_number < 1 or row_number > len(rows):
            raise RowStoreError(f"Row {row_number} is outside sheet '{sheet}'")
        row = rows[row_number - 1]
        if cells:
            needed = max(cells) + 1
            if len(row) < needed:
                row.extend([""] * (needed - len(row)))
        for index, value in cells.items():
            row[index] = value

    async def delete_row(self, sheet: str, row_number: int) -> None:
        rows = self._sheet(sheet)
        if row_number < 2 or row_number > len(rows):
            raise RowStoreError(f"Row {row_number} is outside sheet '{sheet}'")
        del rows[row_number - 1]
