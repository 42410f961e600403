"""
Column mapping for the sheets, resolved from the header row.

A `TableSchema` lists the fields a service needs and the header naming each
one. `load_columns` reads row 1 (through the header cache) and resolves the
schema into a `ColumnMap` of 1-based indices, once per table access, so no
service re-derives indices on its own.
"""
from typing import Dict, List, Optional, Sequence

from intake.core.cache import KeyValueCache
from intake.core.config import settings
from intake.core.errors import StorageCorruptionError
from intake.core.logger import get_logger
from intake.store.tabular import TabularStore

logger = get_logger(__name__)


def _norm(header: str) -> str:
    return " ".join(str(header).split()).lower()


class ColumnMap:
    def __init__(self, table: str, indices: Dict[str, Optional[int]], width: int):
        self.table = table
        self.indices = indices
        self.width = width

    def index(self, field: str) -> Optional[int]:
        return self.indices.get(field)

    def has(self, field: str) -> bool:
        return self.indices.get(field) is not None

    def value(self, row: Sequence[str], field: str) -> str:
        idx = self.indices.get(field)
        if idx is None or idx > len(row):
            return ""
        return row[idx - 1]

    def build_row(self, values: Dict[str, object]) -> List[str]:
        row = [""] * self.width
        for field, value in values.items():
            idx = self.indices.get(field)
            if idx is not None:
                row[idx - 1] = "" if value is None else str(value)
        return row


class TableSchema:
    def __init__(
        self,
        table: str,
        required: Dict[str, str],
        optional: Dict[str, str] = None,
        strict: bool = False,
    ):
        """
        Args:
            table: Sheet name
            required: field -> header text; a missing header is corruption
            optional: field -> header text; a missing header means the
                feature is absent and the field resolves to None
            strict: header must equal the required headers in order; used
                where a shifted column would write data into the wrong field
        """
        self.table = table
        self.required = required
        self.optional = optional or {}
        self.strict = strict

    @property
    def default_header(self) -> List[str]:
        return list(self.required.values()) + list(self.optional.values())

    def resolve(self, header: Sequence[str]) -> ColumnMap:
        positions = {}
        for i, name in enumerate(header, start=1):
            positions.setdefault(_norm(name), i)

        if self.strict:
            expected = [_norm(h) for h in self.required.values()]
            actual = [_norm(h) for h in header[:len(expected)]]
            if actual != expected:
                raise StorageCorruptionError(
                    self.table,
                    "header does not match the expected layout",
                    {"expected": list(self.required.values()), "actual": list(header)},
                )

        indices: Dict[str, Optional[int]] = {}
        missing = []
        for field, name in self.required.items():
            idx = positions.get(_norm(name))
            if idx is None:
                missing.append(name)
            indices[field] = idx
        if missing:
            raise StorageCorruptionError(self.table, "missing columns", {"missing": missing})

        for field, name in self.optional.items():
            indices[field] = positions.get(_norm(name))
            if indices[field] is None:
                logger.warning(f"{self.table} has no '{name}' column, feature disabled")

        return ColumnMap(self.table, indices, len(header))


def header_cache_key(table: str) -> str:
    return f"header:{table}"


def load_columns(store: TabularStore, cache: KeyValueCache, schema: TableSchema) -> ColumnMap:
    key = header_cache_key(schema.table)
    header = cache.get(key)
    if header is None:
        rows = store.read_range(schema.table, 1, 1)
        if not rows:
            raise StorageCorruptionError(schema.table, "sheet has no header row")
        header = rows[0]
        cache.put(key, header, settings.HEADER_CACHE_TTL_SECONDS)
    return schema.resolve(header)


def invalidate_header(cache: KeyValueCache, table: str) -> None:
    cache.remove(header_cache_key(table))
    logger.debug(f"Invalidated header cache for {table}")


def bootstrap(store: TabularStore, schemas: Sequence[TableSchema]) -> None:
    for schema in schemas:
        store.ensure_table(schema.table, schema.default_header)
