"""JSON-file persistence for ``MemoryStore``.

Every committed batch is written to disk straight away so a crash between
records never loses an already-committed one.

Key design choices:

* **Atomic writes** -- the file is written to a temp file in the same
  directory and moved into place with ``os.replace()``.
* **Version field** -- the payload carries ``version`` so the layout can
  evolve; unknown versions are rejected on load.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from .base import Document, StoreError
from .memory import MemoryStore, _Operation

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


class JsonFileStore(MemoryStore):
    """``MemoryStore`` mirrored to a JSON file.

    Args:
        path: Location of the store file.  Created on first commit; its
            parent directory is created as needed.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path)
        if self._path.exists():
            self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _apply(self, operations: list[_Operation]) -> None:
        # Disk first: a failed write leaves memory at the last saved state.
        docs, mixins = self._stage(operations)
        self._write(docs, mixins)
        self._swap(docs, mixins, len(operations))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        with open(self._path, encoding="utf-8") as fh:
            payload = json.load(fh)

        version = payload.get("version")
        if version != _FORMAT_VERSION:
            raise StoreError(
                f"Unsupported store format version {version!r} in {self._path}"
            )

        self._docs = {
            raw["id"]: Document.model_validate(raw)
            for raw in payload.get("documents", [])
        }
        self._mixins = {
            (entry["doc_id"], entry["mixin"]): entry["data"]
            for entry in payload.get("mixins", [])
        }
        logger.debug(
            "Loaded %d documents from %s", len(self._docs), self._path
        )

    def save(self) -> None:
        """Write the whole store to disk atomically."""
        self._write(self._docs, self._mixins)

    def _write(
        self,
        docs: dict[str, Document],
        mixins: dict[tuple[str, str], dict],
    ) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": _FORMAT_VERSION,
            "documents": [doc.model_dump(mode="json") for doc in docs.values()],
            "mixins": [
                {"doc_id": doc_id, "mixin": mixin, "data": data}
                for (doc_id, mixin), data in mixins.items()
            ],
        }

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, default=str)
            os.replace(tmp_path, self._path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
