"""The pure scoring package must stay free of I/O imports."""

from __future__ import annotations

import importlib.util
from pathlib import Path

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "check_imports.py"


def _load_checker():
    spec = importlib.util.spec_from_file_location("check_imports", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_scoring_package_has_no_io_imports():
    assert _load_checker().check() == []


def test_checker_flags_forbidden_import(tmp_path):
    (tmp_path / "bad.py").write_text("import sqlite3\nfrom pqa_engine.store import SnapshotStore\n")
    (tmp_path / "ok.py").write_text("from pqa_engine.models import Tier\n")
    violations = _load_checker().check(tmp_path)
    assert violations == ["bad.py:1: import sqlite3", "bad.py:2: from pqa_engine.store"]
