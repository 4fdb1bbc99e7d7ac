"""Apply key updates to the target env file and verify them afterwards."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from .atomic_write import atomic_write_bytes
from .env_document import KeyValueDocument, apply_updates, parse, serialize
from .errors import ConfirmMismatchError, FileIOError

logger = logging.getLogger(__name__)


class ConfigStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read_document(self, *, missing_ok: bool = True) -> KeyValueDocument:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError as exc:
            if missing_ok:
                return KeyValueDocument()
            raise FileIOError(f"env file not found: {self.path}") from exc
        except OSError as exc:
            raise FileIOError(f"read {self.path}: {exc}") from exc
        try:
            return parse(data)
        except UnicodeDecodeError as exc:
            raise FileIOError(f"{self.path} is not valid UTF-8: {exc}") from exc

    def apply(self, updates: Mapping[str, str]) -> Path:
        """Write ``updates`` into the env file atomically.

        A missing file is treated as empty and created. Raises ``FileIOError``
        when reading or writing fails; the file is then unchanged.
        """
        if not updates:
            return self.path
        document = self.read_document()
        try:
            new_document = apply_updates(document, updates)
        except ValueError as exc:
            raise FileIOError(f"cannot render updates for {self.path}: {exc}") from exc
        try:
            atomic_write_bytes(self.path, serialize(new_document))
        except OSError as exc:
            raise FileIOError(f"write {self.path}: {exc}") from exc
        logger.info("Updated %s with keys: %s", self.path, ", ".join(updates))
        return self.path

    def confirm(self, updates: Mapping[str, str]) -> None:
        """Re-read the file and check every key holds its requested value."""
        values = self.read_document(missing_ok=False).values()
        mismatches: Dict[str, Tuple[str, Optional[str]]] = {}
        for key, expected in updates.items():
            actual = values.get(key)
            if actual != expected:
                mismatches[key] = (expected, actual)
        if mismatches:
            raise ConfirmMismatchError(self.path, mismatches)
        logger.info("Confirmed %s values after update: %s", self.path, dict(updates))
