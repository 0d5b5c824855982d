"""Persistent per-host credential store.

Stores one :class:`~labctl.models.HostRecord` per authenticated host in
``<config_dir>/hosts.json``. The file is read whole and rewritten whole on
every change, atomically via :func:`~labctl.config.atomic_write` with
``0o600`` permissions so that secrets are never world-readable, even
momentarily.

Components never patch individual fields: they load a record, build an
updated copy, and hand the complete record back to :meth:`CredentialStore.save`.
There is no cross-process locking; two processes logging in to the same host
at once can overwrite each other's write.

See Also:
    :class:`~labctl.auth.session.SessionResolver` -- the only reader used
    by API-calling code.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from labctl.config import atomic_write, get_config_dir
from labctl.exceptions import ConfigError
from labctl.models import HostRecord

HOSTS_FILENAME = "hosts.json"


class CredentialStore(ABC):
    """Key-value persistence for host records, keyed by hostname.

    Implementations return detached copies from :meth:`load` so that callers
    cannot mutate stored state except through :meth:`save`.
    """

    @abstractmethod
    def load(self, host: str) -> Optional[HostRecord]:
        """Return the record for *host*, or ``None`` if there is none."""
        ...

    @abstractmethod
    def load_all(self) -> dict[str, HostRecord]:
        """Return every stored record keyed by host."""
        ...

    @abstractmethod
    def save(self, record: HostRecord) -> None:
        """Insert or replace the whole record for ``record.host``."""
        ...

    @abstractmethod
    def delete(self, host: str) -> bool:
        """Remove the record for *host*. Returns ``False`` if none existed."""
        ...

    def hosts(self) -> list[str]:
        """Return the stored hostnames, sorted."""
        return sorted(self.load_all())


class FileCredentialStore(CredentialStore):
    """Store host records in a single JSON file.

    Args:
        path: File to use. Defaults to ``<config_dir>/hosts.json``.

    Example::

        store = FileCredentialStore()
        store.save(HostRecord(host="gitlab.com", access_token="glpat-123"))
        assert store.load("gitlab.com").access_token == "glpat-123"
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path if path is not None else get_config_dir() / HOSTS_FILENAME

    @property
    def path(self) -> Path:
        """The filesystem path to the hosts file."""
        return self._path

    def _read(self) -> dict[str, HostRecord]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise ConfigError(f"Cannot read credentials at {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid credentials file at {self._path}: expected an object")

        records: dict[str, HostRecord] = {}
        for host, raw in data.items():
            if not isinstance(raw, dict):
                raise ConfigError(f"Invalid entry for {host!r} in {self._path}")
            # The key is authoritative; older files did not repeat it in the body.
            raw = {**raw, "host": host}
            try:
                records[host] = HostRecord.model_validate(raw)
            except ValidationError as exc:
                raise ConfigError(
                    f"Invalid entry for {host!r} in {self._path}: {exc}"
                ) from exc
        return records

    def _write(self, records: dict[str, HostRecord]) -> None:
        data = {
            host: record.model_dump(mode="json")
            for host, record in sorted(records.items())
        }
        try:
            atomic_write(self._path, json.dumps(data, indent=2) + "\n", mode=0o600)
        except OSError as exc:
            raise ConfigError(f"Cannot write credentials to {self._path}: {exc}") from exc

    def load(self, host: str) -> Optional[HostRecord]:
        return self._read().get(host)

    def load_all(self) -> dict[str, HostRecord]:
        return self._read()

    def save(self, record: HostRecord) -> None:
        """Persist *record*, replacing any existing entry for its host.

        Raises:
            ConfigError: If the existing file cannot be parsed or the new one
                cannot be written.
        """
        records = self._read()
        records[record.host] = record.model_copy(deep=True)
        self._write(records)

    def delete(self, host: str) -> bool:
        records = self._read()
        if host not in records:
            return False
        del records[host]
        self._write(records)
        return True


class MemoryCredentialStore(CredentialStore):
    """In-process store with the same copy semantics as :class:`FileCredentialStore`.

    Useful when credentials come from somewhere other than disk, and in tests.
    """

    def __init__(self, records: Optional[dict[str, HostRecord]] = None) -> None:
        self._records: dict[str, HostRecord] = {}
        for record in (records or {}).values():
            self.save(record)

    def load(self, host: str) -> Optional[HostRecord]:
        record = self._records.get(host)
        return record.model_copy(deep=True) if record is not None else None

    def load_all(self) -> dict[str, HostRecord]:
        return {host: rec.model_copy(deep=True) for host, rec in self._records.items()}

    def save(self, record: HostRecord) -> None:
        self._records[record.host] = record.model_copy(deep=True)

    def delete(self, host: str) -> bool:
        return self._records.pop(host, None) is not None
