"""Tests for pqa_engine.sources."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from conftest import NOW, make_signal
from pqa_engine.errors import ConfigurationError
from pqa_engine.models import ContactAttributes
from pqa_engine.sources import MemorySignalSource, SignalSource, load_signal_file

SIGNAL_FILE = """\
accounts:
  - id: acme
    size: medium
    industry: Software
    employee_count: "1,200"
    contacts:
      - {actor_id: u1, title: VP Engineering}
      - {actor_id: u2, title: Engineer}
  - id: beta
signals:
  - {account_id: acme, type: repo_clone, actor_id: u1, timestamp: "2026-09-30T10:00:00Z"}
  - {account_id: acme, type: api_call, anonymous_id: c-9, timestamp: "2026-09-29T08:30:00+00:00"}
  - {account_id: acme, type: page_view}
"""


class TestMemorySignalSource:
    def test_satisfies_protocol(self):
        assert isinstance(MemorySignalSource(), SignalSource)

    @pytest.mark.asyncio
    async def test_fetch_signals_window_is_inclusive(self):
        inside = make_signal(days_ago=1)
        edge = make_signal(days_ago=10)
        outside = make_signal(days_ago=11)
        source = MemorySignalSource([inside, edge, outside, make_signal("other")])
        got = await source.fetch_signals("acme", NOW - timedelta(days=10), NOW)
        assert got == [inside, edge]

    @pytest.mark.asyncio
    async def test_fetch_contacts_returns_known_only(self):
        source = MemorySignalSource(contacts=[ContactAttributes("u1", "CTO")])
        assert await source.fetch_contacts("acme", ["u1", "u2"]) == {
            "u1": ContactAttributes("u1", "CTO")
        }

    @pytest.mark.asyncio
    async def test_fetch_account_missing(self):
        assert await MemorySignalSource().fetch_account("ghost") is None

    @pytest.mark.asyncio
    async def test_fetch_last_signal_at_has_no_lower_bound(self):
        ancient = make_signal(days_ago=400)
        later = make_signal(days_ago=120)
        future = make_signal(days_ago=-1)
        source = MemorySignalSource([ancient, later, future, make_signal("other")])
        assert await source.fetch_last_signal_at("acme", NOW) == later.timestamp
        assert await source.fetch_last_signal_at("ghost", NOW) is None


class TestLoadSignalFile:
    def test_load_yaml(self, tmp_path, caplog):
        path = tmp_path / "signals.yaml"
        path.write_text(SIGNAL_FILE)
        source = load_signal_file(path)
        assert source.account_ids() == ["acme", "beta"]
        assert "Skipping malformed signal" in caplog.text

    @pytest.mark.asyncio
    async def test_loaded_contents(self, tmp_path):
        path = tmp_path / "signals.yaml"
        path.write_text(SIGNAL_FILE)
        source = load_signal_file(path)

        account = await source.fetch_account("acme")
        assert account.size == "medium"
        assert account.employee_count == 1200

        signals = await source.fetch_signals("acme", NOW - timedelta(days=30), NOW)
        assert [s.type for s in signals] == ["repo_clone", "api_call"]
        assert signals[1].anonymous_id == "c-9"
        assert signals[0].timestamp.tzinfo is not None

        contacts = await source.fetch_contacts("acme", ["u1", "u2"])
        assert contacts["u1"].title == "VP Engineering"

    def test_load_json(self, tmp_path):
        path = tmp_path / "signals.json"
        path.write_text(
            json.dumps(
                {
                    "signals": [
                        {"account_id": "z", "type": "login", "timestamp": "2026-09-30T00:00:00Z"}
                    ]
                }
            )
        )
        assert load_signal_file(path).account_ids() == ["z"]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigurationError, match="Empty"):
            load_signal_file(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_signal_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_signal_file(tmp_path / "missing.yaml")
