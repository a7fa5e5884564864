import json
import tempfile
from pathlib import Path

from agent_loop.tools.builtin import default_registry
from agent_loop.tools.registry import TRUNCATION_MARKER
from agent_loop.tools.ui_tools import ui_registry


def test_file_tools_read_write_list():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        (root / "a.txt").write_text("hello\nworld", encoding="utf-8")
        reg = default_registry(workspace_root=root, allow_absolute=False)

        rc = json.loads(reg.dispatch("read_file", '{"path": "a.txt"}').content)
        assert rc["content"] == "hello\nworld"
        assert rc["size"] == 11
        assert rc["truncated"] is False

        wc = json.loads(reg.dispatch("write_file", json.dumps({"path": "sub/b.txt", "content": "数据"})).content)
        assert wc["success"] is True
        assert wc["bytes_written"] == len("数据".encode("utf-8"))
        assert (root / "sub" / "b.txt").read_text(encoding="utf-8") == "数据"

        lc = json.loads(reg.dispatch("list_directory", "{}").content)
        assert {e["name"] for e in lc["entries"]} == {"a.txt", "sub"}
        assert lc["total"] == 2


def test_write_then_read_in_order():
    with tempfile.TemporaryDirectory() as d:
        reg = default_registry(workspace_root=d)
        reg.dispatch("write_file", '{"path": "note.md", "content": "first"}')
        reg.dispatch("write_file", '{"path": "note.md", "content": "second"}')
        assert json.loads(reg.dispatch("read_file", '{"path": "note.md"}').content)["content"] == "second"


def test_read_file_truncates(monkeypatch):
    monkeypatch.setattr("agent_loop.tools.builtin.settings.max_tool_output_chars", 10)
    with tempfile.TemporaryDirectory() as d:
        Path(d, "big.log").write_text("x" * 25, encoding="utf-8")
        reg = default_registry(workspace_root=d)
        rc = json.loads(reg.dispatch("read_file", '{"path": "big.log"}').content)
        assert rc["truncated"] is True
        assert rc["size"] == 25
        assert rc["content"] == "x" * 10 + TRUNCATION_MARKER


def test_list_directory_caps_entries(monkeypatch):
    monkeypatch.setattr("agent_loop.tools.builtin.settings.max_list_entries", 3)
    with tempfile.TemporaryDirectory() as d:
        for i in range(5):
            Path(d, f"f{i}.txt").write_text("", encoding="utf-8")
        reg = default_registry(workspace_root=d)
        lc = json.loads(reg.dispatch("list_directory", '{"directory": "."}').content)
        assert lc["total"] == 5
        assert lc["showing"] == 3


def test_path_outside_workspace_is_fault():
    with tempfile.TemporaryDirectory() as d:
        reg = default_registry(workspace_root=d, allow_absolute=False)
        result = reg.dispatch("read_file", '{"path": "../../etc/passwd"}')
        assert result.ok is False
        assert json.loads(result.content)["error"]["code"] == "CAPABILITY_EXECUTION_FAULT"


def test_read_missing_file_is_fault():
    with tempfile.TemporaryDirectory() as d:
        reg = default_registry(workspace_root=d)
        result = reg.dispatch("read_file", '{"path": "nope.txt"}')
        assert result.error_code == "CAPABILITY_EXECUTION_FAULT"


def test_analyze_data_and_weather():
    reg = default_registry()
    stats = json.loads(reg.dispatch("analyze_data", '{"values": [1, 2, 3, 4]}').content)
    assert stats["mean"] == 2.5
    assert stats["median"] == 2.5
    assert stats["count"] == 4
    weather = json.loads(reg.dispatch("get_weather", '{"city": "Madrid", "units": "fahrenheit"}').content)
    assert weather["city"] == "Madrid"
    assert weather["units"] == "fahrenheit"
    bad = reg.dispatch("get_weather", '{"city": "Madrid", "units": "kelvin"}')
    assert bad.error_code == "ARGUMENT_VALIDATION_ERROR"


def test_ui_tools_emit_actions():
    reg = ui_registry()
    card = reg.dispatch("show_weather_card", '{"city": "New York"}')
    assert card.ui_action.kind == "mount"
    assert card.ui_action.component == "weather_card"
    assert card.ui_action.component_id == "weather-new-york"
    assert json.loads(card.content)["city"] == "New York"

    upd = reg.dispatch("update_component", '{"component_id": "weather-new-york", "props": {"temperature": 30}}')
    assert upd.ui_action.kind == "update"
    assert upd.ui_action.props == {"temperature": 30}

    rm = reg.dispatch("remove_component", '{"component_id": "weather-new-york"}')
    assert rm.ui_action.to_dict()["type"] == "unmount"


def test_show_chart_length_mismatch_is_fault():
    reg = ui_registry()
    result = reg.dispatch(
        "show_chart",
        '{"title": "t", "chart_type": "bar", "labels": ["a", "b"], "values": [1]}',
    )
    assert result.ok is False
    assert result.ui_action is None
