import importlib.util
import sys
from pathlib import Path
import uuid
import pytest


def _load_repl_module():
    """Dynamically load the top-level juice.py (REPL) as a module with a unique name."""
    repl_path = Path(__file__).resolve().parents[1] / "juice.py"
    mod_name = f"juice_repl_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(repl_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


def _feed(monkeypatch, repl, lines):
    lines = iter(lines)

    def fake_read_line(prompt: str) -> str:
        return next(lines)
    monkeypatch.setattr(repl, "read_line", fake_read_line)


def test_repl_exit_immediately(monkeypatch, capsys):
    repl = _load_repl_module()
    _feed(monkeypatch, repl, ["exit"])

    repl.main([])
    out = capsys.readouterr().out
    assert "Juice REPL v0.1" in out
    assert "Type 'exit' or press Ctrl+D to quit." in out


def test_repl_prints_side_effects_and_values(monkeypatch, capsys):
    repl = _load_repl_module()
    _feed(monkeypatch, repl, [
        'print("hello from juice")',
        "1 + 2",
        "var x = 5;",
        "exit",
    ])

    repl.main([])
    out, err = capsys.readouterr()
    assert "hello from juice" in out
    assert "\n3\n" in out
    # Declarations produce no value to echo
    assert "\n5\n" not in out
    assert err == ""


def test_repl_keeps_state_between_lines(monkeypatch, capsys):
    repl = _load_repl_module()
    _feed(monkeypatch, repl, [
        "var xs = [1, 2]",
        "object Box { get() { return 7; } }",
        "push(xs, 3)",
        "xs",
        "Box {}.get()",
        "exit",
    ])

    repl.main([])
    out = capsys.readouterr().out
    assert "[1, 2, 3]" in out
    assert "\n7\n" in out


def test_repl_errors_print_to_stderr(monkeypatch, capsys):
    repl = _load_repl_module()
    _feed(monkeypatch, repl, [
        '1 + "a"',
        "1 / 0",
        "exit",
    ])

    repl.main([])
    out, err = capsys.readouterr()
    assert "TypeError" in err
    assert "ZeroDivisionError" in err
    assert "Error on line 1" in err


def test_repl_eof_exits(monkeypatch, capsys):
    repl = _load_repl_module()
    _feed(monkeypatch, repl, [""])

    repl.main([])
    out = capsys.readouterr().out
    assert "Exiting." in out


def test_run_script_file(tmp_path, capsys):
    repl = _load_repl_module()
    script = tmp_path / "hello.juice"
    script.write_text('var name = "world";\nprint("hello " + name);\n', encoding="utf-8")

    repl.main([str(script)])
    out = capsys.readouterr().out
    assert out == "hello world\n"


def test_run_script_file_reports_errors(tmp_path, capsys):
    repl = _load_repl_module()
    script = tmp_path / "broken.juice"
    script.write_text('print("partial");\nvar a = [1];\na[3];\n', encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        repl.main([str(script)])
    assert excinfo.value.code == 1
    out, err = capsys.readouterr()
    assert "partial" in out
    assert "IndexError" in err
    assert "Error on line 3" in err


def test_run_script_file_rejects_other_extensions(tmp_path, capsys):
    repl = _load_repl_module()
    other = tmp_path / "notes.txt"
    other.write_text("print(1);", encoding="utf-8")

    with pytest.raises(SystemExit):
        repl.main([str(other)])
    assert "expected a .juice file" in capsys.readouterr().err

    with pytest.raises(SystemExit):
        repl.main([str(tmp_path / "missing.juice")])
    assert "file not found" in capsys.readouterr().err
