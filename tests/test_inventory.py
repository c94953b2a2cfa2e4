import threading

import pytest

from services import inventory
from services.store import SqliteToolStore, ToolRecord


@pytest.fixture
def store(tmp_path):
    s = SqliteToolStore(tmp_path / "tools.db")
    s.upsert(ToolRecord(id="unlocktool", name="UnlockTool", status="available", price=20, duration_minutes=30))
    s.upsert(ToolRecord(id="chimeratool", name="Chimera Tool", rates={"24": 100, "1": 15, "3": 40}))
    s.upsert(ToolRecord(id="sigmakey", name="Sigma Key", status="in_use"))
    return s


def test_normalize_tool_name():
    assert inventory.normalize_tool_name("UnLock-Tool") == "unlocktool"
    assert inventory.normalize_tool_name(" unlock tool ") == "unlocktool"
    assert inventory.normalize_tool_name("Z3X Box!") == "z3xbox"
    assert inventory.normalize_tool_name("") == ""


def test_render_flat_price():
    tool = ToolRecord(id="a", name="UnlockTool", price=20.0, duration_minutes=30)
    text = inventory.render_tool(tool)
    assert "*UnlockTool* ✅ Available" in text
    assert "Price: 20 | ⏱ Duration: 30 min" in text


def test_render_rates_sorted_by_numeric_duration():
    tool = ToolRecord(id="a", name="Chimera", status="in_use", rates={"24": 100, "1": 15, "3": 40, "0.5": 8})
    lines = inventory.render_tool(tool).splitlines()
    assert lines[0] == "*Chimera* ❌ In Use"
    assert lines[1:] == ["• 0.5 hrs → 8", "• 1 hr → 15", "• 3 hrs → 40", "• 24 hrs → 100"]


def test_render_rates_with_non_numeric_keys_does_not_raise():
    tool = ToolRecord(id="a", name="Odd", rates={"week": 300, "2": 20})
    lines = inventory.render_tool(tool).splitlines()
    assert lines[1] == "• 2 hrs → 20"
    assert lines[2] == "• week hrs → 300"


def test_render_without_pricing_uses_placeholder():
    text = inventory.render_tool(ToolRecord(id="a", name="Bare"))
    assert inventory.NO_RATE_INFO in text


def test_list_tools_sorted_by_name(store):
    text = inventory.list_tools(store)
    assert text.index("Chimera Tool") < text.index("Sigma Key") < text.index("UnlockTool")
    assert "No rate info" in text
    assert "• 1 hr → 15" in text


def test_list_tools_empty(tmp_path):
    assert inventory.list_tools(SqliteToolStore(tmp_path / "empty.db")) == "No tools are listed right now."


@pytest.mark.parametrize("name", ["unlock tool", "UnLock-Tool", "unlocktool", "UNLOCKTOOL"])
def test_get_status_normalizes_names(store, name):
    assert inventory.get_status(store, name) == inventory.get_status(store, "UnlockTool")


def test_get_status_matches_list_rendering(store):
    status = inventory.get_status(store, "Chimera Tool")
    assert status in inventory.list_tools(store)


def test_get_status_is_idempotent(store):
    assert inventory.get_status(store, "UnlockTool") == inventory.get_status(store, "UnlockTool")


def test_get_status_not_found(store):
    text = inventory.get_status(store, "Hammer")
    assert "not found" in text
    assert "/tool_rental" in text


def test_get_status_punctuation_only_name(store):
    assert "not found" in inventory.get_status(store, "!!!")


def test_find_tool_falls_back_to_legacy_ids(store):
    store.upsert(ToolRecord(id="Octoplus Box", name="Octoplus Box", price=5))
    tool = inventory.find_tool(store, "octoplus-box")
    assert tool is not None
    assert tool.id == "Octoplus Box"


def test_rent_then_return_round_trip(store):
    before = store.get_by_id("unlocktool").status

    rented = inventory.rent_tool(store, "unlock tool")
    assert "You have rented UnlockTool" in rented
    assert "Price: 20" in rented
    assert store.get_by_id("unlocktool").status == "in_use"

    returned = inventory.return_tool(store, "UnlockTool")
    assert "Thanks for returning" in returned
    assert store.get_by_id("unlocktool").status == before


def test_rent_in_use_does_not_mutate(store):
    text = inventory.rent_tool(store, "Sigma Key")
    assert "currently in use" in text
    assert store.get_by_id("sigmakey").status == "in_use"


def test_return_available_does_not_mutate(store):
    text = inventory.return_tool(store, "UnlockTool")
    assert "not currently rented" in text
    assert store.get_by_id("unlocktool").status == "available"


def test_rent_and_return_unknown_tool(store):
    assert "not found" in inventory.rent_tool(store, "Hammer")
    assert "not found" in inventory.return_tool(store, "Hammer")


def test_concurrent_rents_have_one_winner(store):
    barrier = threading.Barrier(2)
    replies = []

    def rent():
        barrier.wait()
        replies.append(inventory.rent_tool(store, "UnlockTool"))

    threads = [threading.Thread(target=rent) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum("You have rented" in r for r in replies) == 1
    assert sum("currently in use" in r for r in replies) == 1
    assert store.get_by_id("unlocktool").status == "in_use"


def test_catalog_record_derives_id():
    record = inventory.catalog_record({"name": "Chimera Tool", "rates": {1: 15}})
    assert record.id == "chimeratool"
    assert record.status == "available"
    assert record.rates == {"1": 15}


@pytest.mark.parametrize("entry", [{}, {"name": "   "}, {"name": "!!"}, {"name": "X", "status": "broken"}])
def test_catalog_record_rejects_bad_entries(entry):
    with pytest.raises(ValueError):
        inventory.catalog_record(entry)


def test_unknown_status_is_shown_raw_and_never_overwritten(store):
    store.upsert(ToolRecord(id="octoplusbox", name="Octoplus Box", status="maintenance"))

    assert "❔ maintenance" in inventory.get_status(store, "Octoplus Box")
    inventory.rent_tool(store, "Octoplus Box")
    inventory.return_tool(store, "Octoplus Box")
    assert store.get_by_id("octoplusbox").status == "maintenance"
