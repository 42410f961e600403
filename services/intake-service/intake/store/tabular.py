"""
Tabular store: named sheets of rows, row 1 being the header.

Rows and columns are 1-based like a spreadsheet. Every call is atomic on
its own (one transaction for the SQL store, one mutex hold for the memory
store), so a reader sees a row either before or after a write, never half
of it. Callers that need several calls to be atomic hold the MutationLock.
"""
import threading
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from intake.core.logger import get_logger
from intake.models.sheet import SheetRow

logger = get_logger(__name__)

APPEND_RETRIES = 5


def _cell(value) -> str:
    return "" if value is None else str(value)


def _fit(cells: Sequence[str], col_count: Optional[int]) -> List[str]:
    row = [_cell(c) for c in cells]
    if col_count is None:
        return row
    if len(row) < col_count:
        row.extend([""] * (col_count - len(row)))
    return row[:col_count]


class TabularStore:
    """Interface consumed by the services."""

    def ensure_table(self, table: str, header: Sequence[str]) -> None:
        """Write `header` as row 1 if the sheet is empty."""
        raise NotImplementedError

    def row_count(self, table: str) -> int:
        """Number of rows including the header."""
        raise NotImplementedError

    def append_row(self, table: str, row: Sequence) -> int:
        raise NotImplementedError

    def read_range(self, table: str, row_start: int, row_count: int, col_count: Optional[int] = None) -> List[List[str]]:
        raise NotImplementedError

    def write_cell(self, table: str, row: int, col: int, value) -> None:
        self.write_cells(table, row, {col: value})

    def write_cells(self, table: str, row: int, values: Dict[int, object]) -> None:
        raise NotImplementedError

    def delete_row(self, table: str, row: int) -> None:
        raise NotImplementedError

    def find_row(self, table: str, col: int, exact_value: str) -> Optional[int]:
        raise NotImplementedError

    def read_rows(self, table: str) -> List[List[str]]:
        """All rows below the header."""
        count = self.row_count(table)
        if count < 2:
            return []
        return self.read_range(table, 2, count - 1)

    def last_row(self, table: str) -> Optional[List[str]]:
        count = self.row_count(table)
        if count < 2:
            return None
        return self.read_range(table, count, 1)[0]


class SqlTabularStore(TabularStore):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def ensure_table(self, table, header):
        if self.row_count(table) == 0:
            self.append_row(table, header)
            logger.info(f"Created sheet {table} with {len(header)} columns")

    def row_count(self, table):
        with self.session_factory() as db:
            return db.query(func.count(SheetRow.id)).filter(SheetRow.sheet == table).scalar() or 0

    def append_row(self, table, row):
        cells = _fit(row, None)
        for attempt in range(APPEND_RETRIES):
            with self.session_factory() as db:
                last = db.query(func.max(SheetRow.position)).filter(SheetRow.sheet == table).scalar() or 0
                db.add(SheetRow(sheet=table, position=last + 1, cells=cells))
                try:
                    db.commit()
                    return last + 1
                except IntegrityError:
                    # another writer took the same position
                    db.rollback()
                    logger.debug(f"Append to {table} collided on row {last + 1}, retry {attempt + 1}")
        raise RuntimeError(f"Could not append to {table} after {APPEND_RETRIES} attempts")

    def read_range(self, table, row_start, row_count, col_count=None):
        with self.session_factory() as db:
            rows = (
                db.query(SheetRow)
                .filter(
                    SheetRow.sheet == table,
                    SheetRow.position >= row_start,
                    SheetRow.position < row_start + row_count,
                )
                .order_by(SheetRow.position)
                .all()
            )
            return [_fit(r.cells or [], col_count) for r in rows]

    def write_cells(self, table, row, values):
        with self.session_factory() as db:
            record = db.query(SheetRow).filter(SheetRow.sheet == table, SheetRow.position == row).first()
            if record is None:
                raise IndexError(f"{table} has no row {row}")
            # Assign a new list so SQLAlchemy detects the JSON change
            cells = list(record.cells or [])
            width = max(values)
            if len(cells) < width:
                cells.extend([""] * (width - len(cells)))
            for col, value in values.items():
                cells[col - 1] = _cell(value)
            record.cells = cells
            db.commit()

    def delete_row(self, table, row):
        with self.session_factory() as db:
            deleted = db.query(SheetRow).filter(SheetRow.sheet == table, SheetRow.position == row).delete()
            if not deleted:
                raise IndexError(f"{table} has no row {row}")
            # Shift in two passes so the unique (sheet, position) pair never collides
            db.query(SheetRow).filter(SheetRow.sheet == table, SheetRow.position > row).update(
                {SheetRow.position: -(SheetRow.position - 1)}, synchronize_session=False
            )
            db.query(SheetRow).filter(SheetRow.sheet == table, SheetRow.position < 0).update(
                {SheetRow.position: -SheetRow.position}, synchronize_session=False
            )
            db.commit()

    def find_row(self, table, col, exact_value):
        with self.session_factory() as db:
            rows = (
                db.query(SheetRow.position, SheetRow.cells)
                .filter(SheetRow.sheet == table, SheetRow.position > 1)
                .order_by(SheetRow.position)
                .all()
            )
        for position, cells in rows:
            if cells and len(cells) >= col and cells[col - 1] == exact_value:
                return position
        return None


class MemoryTabularStore(TabularStore):
    def __init__(self):
        self._tables: Dict[str, List[List[str]]] = {}
        self._mutex = threading.RLock()

    def _rows(self, table):
        return self._tables.setdefault(table, [])

    def ensure_table(self, table, header):
        with self._mutex:
            if not self._rows(table):
                self._rows(table).append(_fit(header, None))

    def row_count(self, table):
        with self._mutex:
            return len(self._rows(table))

    def append_row(self, table, row):
        with self._mutex:
            rows = self._rows(table)
            rows.append(_fit(row, None))
            return len(rows)

    def read_range(self, table, row_start, row_count, col_count=None):
        with self._mutex:
            rows = self._rows(table)[row_start - 1:row_start - 1 + row_count]
            return [_fit(r, col_count) for r in rows]

    def write_cells(self, table, row, values):
        with self._mutex:
            rows = self._rows(table)
            if row < 1 or row > len(rows):
                raise IndexError(f"{table} has no row {row}")
            cells = list(rows[row - 1])
            width = max(values)
            if len(cells) < width:
                cells.extend([""] * (width - len(cells)))
            for col, value in values.items():
                cells[col - 1] = _cell(value)
            rows[row - 1] = cells

    def delete_row(self, table, row):
        with self._mutex:
            rows = self._rows(table)
            if row < 1 or row > len(rows):
                raise IndexError(f"{table} has no row {row}")
            del rows[row - 1]

    def find_row(self, table, col, exact_value):
        with self._mutex:
            for position, cells in enumerate(self._rows(table)[1:], start=2):
                if len(cells) >= col and cells[col - 1] == exact_value:
                    return position
        return None
