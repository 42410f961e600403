import pytest

from intake.core.cache import MemoryCache
from intake.core.errors import StorageCorruptionError
from intake.models.directory import USER_SCHEMA
from intake.models.ticket import TICKET_SCHEMA
from intake.store.schema import header_cache_key, invalidate_header, load_columns


@pytest.fixture(params=["sql", "memory"])
def sheet(request):
    store = request.getfixturevalue("store" if request.param == "sql" else "memory_store")
    store.ensure_table("Sheet1", ["A", "B", "C"])
    return store


def test_append_returns_row_numbers(sheet):
    assert sheet.append_row("Sheet1", ["a1", "b1", "c1"]) == 2
    assert sheet.append_row("Sheet1", ["a2", "b2", "c2"]) == 3
    assert sheet.row_count("Sheet1") == 3
    assert sheet.last_row("Sheet1") == ["a2", "b2", "c2"]


def test_ensure_table_keeps_existing_header(sheet):
    sheet.ensure_table("Sheet1", ["X"])
    assert sheet.read_range("Sheet1", 1, 1) == [["A", "B", "C"]]


def test_read_range_pads_and_truncates(sheet):
    sheet.append_row("Sheet1", ["a1"])
    sheet.append_row("Sheet1", ["a2", "b2", "c2", "d2"])
    assert sheet.read_range("Sheet1", 2, 2, 3) == [["a1", "", ""], ["a2", "b2", "c2"]]


def test_write_cells_is_one_row_write(sheet):
    sheet.append_row("Sheet1", ["a1", "b1"])
    sheet.write_cells("Sheet1", 2, {2: "B", 5: "E"})
    assert sheet.read_range("Sheet1", 2, 1) == [["a1", "B", "", "", "E"]]

    sheet.write_cell("Sheet1", 2, 1, None)
    assert sheet.read_range("Sheet1", 2, 1, 2) == [["", "B"]]


def test_write_missing_row_raises(sheet):
    with pytest.raises(IndexError):
        sheet.write_cell("Sheet1", 9, 1, "x")


def test_delete_row_shifts_rows_up(sheet):
    for i in range(1, 5):
        sheet.append_row("Sheet1", [f"a{i}"])

    sheet.delete_row("Sheet1", 3)

    assert [r[0] for r in sheet.read_rows("Sheet1")] == ["a1", "a3", "a4"]
    assert sheet.find_row("Sheet1", 1, "a4") == 4
    assert sheet.append_row("Sheet1", ["a5"]) == 5


def test_find_row_is_exact_and_case_sensitive(sheet):
    sheet.append_row("Sheet1", ["REQ-2406001", "x"])
    sheet.append_row("Sheet1", ["REQ-2406002", "y"])

    assert sheet.find_row("Sheet1", 1, "REQ-2406002") == 3
    assert sheet.find_row("Sheet1", 1, "req-2406002") is None
    assert sheet.find_row("Sheet1", 1, "REQ-240600") is None
    # the header row is never a match
    assert sheet.find_row("Sheet1", 1, "A") is None


def test_sheets_are_independent(sheet):
    sheet.ensure_table("Other", ["Z"])
    sheet.append_row("Other", ["z1"])
    assert sheet.read_rows("Sheet1") == []
    assert sheet.read_rows("Other") == [["z1"]]


def test_ticket_columns_resolve_from_header(memory_store):
    columns = load_columns(memory_store, MemoryCache(), TICKET_SCHEMA)
    assert columns.index("id") == 1
    assert columns.index("admin_attachment_urls") == 14
    assert columns.width == 14


def test_missing_optional_column_disables_feature(memory_store):
    memory_store.ensure_table("Tickets2", TICKET_SCHEMA.default_header[:-1])
    columns = TICKET_SCHEMA.resolve(memory_store.read_range("Tickets2", 1, 1)[0])
    assert not columns.has("admin_attachment_urls")
    assert columns.value(["x"] * 13, "admin_attachment_urls") == ""


def test_missing_required_column_is_corruption():
    header = [h for h in TICKET_SCHEMA.default_header if h != "Status"]
    with pytest.raises(StorageCorruptionError) as exc:
        TICKET_SCHEMA.resolve(header)
    assert exc.value.details["missing"] == ["Status"]


def test_header_match_ignores_case_and_order():
    header = list(reversed([h.upper() for h in TICKET_SCHEMA.default_header]))
    columns = TICKET_SCHEMA.resolve(header)
    assert columns.index("id") == len(header)


def test_strict_users_header_fails_closed():
    shifted = ["Username", "Salt", "Password Hash", "Role", "Status", "Team", "Allowed Types"]
    with pytest.raises(StorageCorruptionError):
        USER_SCHEMA.resolve(shifted)


def test_header_is_cached_until_invalidated(memory_store):
    cache = MemoryCache()
    load_columns(memory_store, cache, TICKET_SCHEMA)
    assert cache.get(header_cache_key("Tickets")) == TICKET_SCHEMA.default_header

    invalidate_header(cache, "Tickets")
    assert cache.get(header_cache_key("Tickets")) is None


def test_memory_cache_expires():
    now = [100.0]
    cache = MemoryCache(clock=lambda: now[0])
    cache.put("k", {"v": 1}, ttl_seconds=10)
    assert cache.get("k") == {"v": 1}
    now[0] += 11
    assert cache.get("k") is None
