#!/usr/bin/env python3
"""CI enforcement: the pure scoring package must not import I/O modules.

``pqa_engine.scoring`` is deterministic and side-effect free; storage,
event-loop and source access belong to the coordinator.
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path

FORBIDDEN_PREFIXES = (
    "asyncio",
    "sqlite3",
    "fastapi",
    "uvicorn",
    "pqa_engine.store",
    "pqa_engine.coordinator",
    "pqa_engine.sources",
    "pqa_engine.engine",
    "pqa_engine.api",
)
SRC_DIR = Path(__file__).resolve().parent.parent / "src" / "pqa_engine" / "scoring"


def _forbidden(module: str) -> bool:
    return any(module == p or module.startswith(p + ".") for p in FORBIDDEN_PREFIXES)


def check(src_dir: Path = SRC_DIR) -> list[str]:
    violations: list[str] = []
    for py_file in sorted(src_dir.rglob("*.py")):
        try:
            tree = ast.parse(py_file.read_text())
        except SyntaxError:
            continue
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    if _forbidden(alias.name):
                        rel = py_file.relative_to(src_dir)
                        violations.append(f"{rel}:{node.lineno}: import {alias.name}")
            elif isinstance(node, ast.ImportFrom):
                if node.module and _forbidden(node.module):
                    rel = py_file.relative_to(src_dir)
                    violations.append(f"{rel}:{node.lineno}: from {node.module}")
    return violations


def main() -> None:
    violations = check()
    if violations:
        print("ERROR: I/O imports found in pqa_engine.scoring:")
        for v in violations:
            print(f"  {v}")
        sys.exit(1)
    print("OK: pqa_engine.scoring imports no I/O modules")


if __name__ == "__main__":
    main()
