"""Key/value persistence backends for the credential store."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

from tachobridge.exceptions import BridgeConfigError

_logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String key → string value storage that survives process restarts."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage, mostly for tests and one-shot scripts."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._values)


class JsonFileStorage:
    """Storage backed by a single JSON object on disk.

    Every mutation rewrites the file through a temporary sibling and
    ``os.replace`` so a crash never leaves a half-written file behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._values = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise BridgeConfigError(f"Cannot read credentials file {self._path}: {exc}") from exc

        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError:
            _logger.warning("Credentials file %s is not valid JSON; starting empty", self._path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Credentials file %s does not hold an object; starting empty", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f"{self._path.name}.tmp")
        tmp.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
        os.chmod(tmp, 0o600)
        os.replace(tmp, self._path)

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        if self._values.get(key) == value:
            return
        self._values[key] = value
        self._write()

    def delete(self, key: str) -> None:
        if key not in self._values:
            return
        del self._values[key]
        self._write()
