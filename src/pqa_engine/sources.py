"""Signal and identity sources: the engine's read-only input boundary.

Implementations live with the ingestion pipeline, not here.  Two common
patterns:

- **Warehouse source**: ``fetch_signals()`` queries the signal table for one
  account and time window; ``fetch_last_signal_at()`` has no lower bound so
  accounts idle past the lookback window still report when they were last
  seen.
- **Static source**: :class:`MemorySignalSource`, populated from a YAML or
  JSON file by :func:`load_signal_file` (CLI runs and tests).

Any exception escaping a source is treated by the coordinator as an
:class:`~pqa_engine.errors.AggregationFailure` and retried.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from pqa_engine.errors import ConfigurationError
from pqa_engine.models import (
    AccountAttributes,
    ContactAttributes,
    Signal,
    ensure_utc,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class SignalSource(Protocol):
    """Interface for signal, contact and firmographic providers."""

    async def fetch_signals(
        self, account_id: str, since: datetime, until: datetime,
    ) -> list[Signal]: ...

    async def fetch_contacts(
        self, account_id: str, actor_ids: Collection[str],
    ) -> dict[str, ContactAttributes]: ...

    async def fetch_account(self, account_id: str) -> AccountAttributes | None: ...

    async def fetch_last_signal_at(
        self, account_id: str, until: datetime,
    ) -> datetime | None: ...


class MemorySignalSource:
    """In-process source holding signals and attributes in dictionaries."""

    def __init__(
        self,
        signals: Iterable[Signal] = (),
        *,
        accounts: Iterable[AccountAttributes] = (),
        contacts: Iterable[ContactAttributes] = (),
    ) -> None:
        self._signals: dict[str, list[Signal]] = {}
        self._accounts: dict[str, AccountAttributes] = {a.account_id: a for a in accounts}
        self._contacts: dict[str, ContactAttributes] = {c.actor_id: c for c in contacts}
        for sig in signals:
            self.add_signal(sig)

    def add_signal(self, signal: Signal) -> None:
        self._signals.setdefault(signal.account_id, []).append(signal)

    def set_account(self, account: AccountAttributes) -> None:
        self._accounts[account.account_id] = account

    def set_contact(self, contact: ContactAttributes) -> None:
        self._contacts[contact.actor_id] = contact

    def account_ids(self) -> list[str]:
        return sorted(set(self._signals) | set(self._accounts))

    async def fetch_signals(
        self, account_id: str, since: datetime, until: datetime,
    ) -> list[Signal]:
        since, until = ensure_utc(since), ensure_utc(until)
        return [
            s for s in self._signals.get(account_id, [])
            if since <= s.timestamp <= until
        ]

    async def fetch_contacts(
        self, account_id: str, actor_ids: Collection[str],
    ) -> dict[str, ContactAttributes]:
        return {a: self._contacts[a] for a in actor_ids if a in self._contacts}

    async def fetch_account(self, account_id: str) -> AccountAttributes | None:
        return self._accounts.get(account_id)

    async def fetch_last_signal_at(
        self, account_id: str, until: datetime,
    ) -> datetime | None:
        until = ensure_utc(until)
        return max(
            (s.timestamp for s in self._signals.get(account_id, []) if s.timestamp <= until),
            default=None,
        )


def _parse_signal(raw: dict[str, Any]) -> Signal:
    return Signal(
        account_id=str(raw["account_id"]).strip(),
        type=str(raw["type"]).strip(),
        timestamp=parse_timestamp(raw["timestamp"]),
        actor_id=raw.get("actor_id") or None,
        anonymous_id=raw.get("anonymous_id") or None,
        metadata=dict(raw.get("metadata") or {}),
    )


def _parse_employee_count(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    digits = "".join(c for c in str(value) if c.isdigit())
    return int(digits) if digits else None


def load_signal_file(path: str | Path) -> MemorySignalSource:
    """Load signals, accounts and contacts from a YAML (or JSON) file.

    Expected shape::

        accounts:
          - id: acme
            size: MEDIUM
            industry: Software
            contacts:
              - {actor_id: u1, title: VP Engineering}
        signals:
          - {account_id: acme, type: repo_clone, actor_id: u1,
             timestamp: "2026-10-01T12:00:00Z"}

    Malformed signal records are skipped with a warning; a malformed file is
    a :class:`ConfigurationError`.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot load signal file {path}: {exc}") from exc
    if raw_data is None:
        raise ConfigurationError(f"Empty signal file: {path}")
    if not isinstance(raw_data, dict):
        raise ConfigurationError(f"Signal file root must be a mapping: {path}")

    source = MemorySignalSource()
    for acct in raw_data.get("accounts", []) or []:
        account_id = str(acct["id"]).strip()
        source.set_account(
            AccountAttributes(
                account_id=account_id,
                size=acct.get("size"),
                industry=acct.get("industry"),
                employee_count=_parse_employee_count(acct.get("employee_count")),
            )
        )
        for contact in acct.get("contacts", []) or []:
            source.set_contact(
                ContactAttributes(actor_id=str(contact["actor_id"]), title=contact.get("title"))
            )

    skipped = 0
    for raw in raw_data.get("signals", []) or []:
        try:
            source.add_signal(_parse_signal(raw))
        except (KeyError, TypeError, ValueError) as exc:
            skipped += 1
            logger.warning("Skipping malformed signal in %s: %s", path, exc)
    if skipped:
        logger.info("Skipped %d malformed signal(s) from %s", skipped, path)
    return source
