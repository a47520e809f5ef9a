"""
Batch and draft stores.

The engine only talks to two narrow interfaces: :class:`BatchStore` for the
authoritative batch record and :class:`DraftStore` for the analyst's cached
in-progress copy. In-memory versions back the tests; :class:`YamlBatchStore`
and :class:`YamlDraftStore` keep one YAML file per record in a folder.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .io.records import RecordError, load_batch, load_draft, save_batch, save_draft
from .models import Batch, Draft

__all__ = [
    "StoreError",
    "BatchStore",
    "DraftStore",
    "InMemoryBatchStore",
    "InMemoryDraftStore",
    "YamlBatchStore",
    "YamlDraftStore",
    "PATCH_KEYS",
    "apply_patch",
]

logger = logging.getLogger(__name__)

# batch attributes a patch may change
PATCH_KEYS = ("calibration", "analyses", "analyst", "analysis_date", "status")


class StoreError(RuntimeError):
    """A store could not read or write a record."""


def apply_patch(batch: Batch, patch: Mapping[str, Any]) -> Batch:
    unknown = set(patch) - set(PATCH_KEYS)
    if unknown:
        raise StoreError(f"Cannot patch batch fields {sorted(unknown)}")
    return replace(batch, **patch)


# ------------------------------------------------------------------ #
# interfaces                                                         #
# ------------------------------------------------------------------ #
class BatchStore(ABC):
    @abstractmethod
    def get_batch(self, batch_id: str) -> Batch:
        """Return the batch or raise :class:`StoreError`."""

    @abstractmethod
    def update_batch(self, batch_id: str, patch: Mapping[str, Any]) -> Batch:
        """Apply *patch* and return the updated batch, or raise :class:`StoreError`."""


class DraftStore(ABC):
    @abstractmethod
    def get_draft(self, key: str) -> Optional[Draft]:
        ...

    @abstractmethod
    def set_draft(self, key: str, draft: Draft) -> None:
        ...

    @abstractmethod
    def delete_draft(self, key: str) -> None:
        ...


# ------------------------------------------------------------------ #
# in memory                                                          #
# ------------------------------------------------------------------ #
class InMemoryBatchStore(BatchStore):
    def __init__(self, batches: Optional[Mapping[str, Batch]] = None):
        self.batches: Dict[str, Batch] = dict(batches or {})

    def get_batch(self, batch_id: str) -> Batch:
        try:
            return self.batches[batch_id]
        except KeyError as exc:
            raise StoreError(f"Unknown batch {batch_id}") from exc

    def update_batch(self, batch_id: str, patch: Mapping[str, Any]) -> Batch:
        updated = apply_patch(self.get_batch(batch_id), patch)
        self.batches[batch_id] = updated
        return updated


class InMemoryDraftStore(DraftStore):
    def __init__(self):
        self.drafts: Dict[str, Draft] = {}

    def get_draft(self, key: str) -> Optional[Draft]:
        return self.drafts.get(key)

    def set_draft(self, key: str, draft: Draft) -> None:
        self.drafts[key] = draft

    def delete_draft(self, key: str) -> None:
        self.drafts.pop(key, None)


# ------------------------------------------------------------------ #
# YAML folders                                                       #
# ------------------------------------------------------------------ #
_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]+")


def _file_name(key: str) -> str:
    return _SAFE_NAME.sub("_", key) + ".yml"


class YamlBatchStore(BatchStore):
    """One ``<batch id>.yml`` per batch inside *folder*."""

    def __init__(self, folder: Path | str):
        self.folder = Path(folder)

    def path(self, batch_id: str) -> Path:
        return self.folder / _file_name(batch_id)

    def get_batch(self, batch_id: str) -> Batch:
        try:
            return load_batch(self.path(batch_id))
        except (OSError, RecordError) as exc:
            raise StoreError(f"Cannot read batch {batch_id}: {exc}") from exc

    def update_batch(self, batch_id: str, patch: Mapping[str, Any]) -> Batch:
        updated = apply_patch(self.get_batch(batch_id), patch)
        try:
            save_batch(updated, self.path(batch_id))
        except OSError as exc:
            raise StoreError(f"Cannot write batch {batch_id}: {exc}") from exc
        logger.info("Batch %s written to %s", batch_id, self.path(batch_id))
        return updated


class YamlDraftStore(DraftStore):
    """
    Drafts kept as YAML files in *folder*, one per session key.

    A missing file is simply "no draft"; an unreadable one is logged and
    also treated as absent so a corrupt cache never blocks loading.
    """

    def __init__(self, folder: Path | str = "drafts"):
        self.folder = Path(folder)

    def path(self, key: str) -> Path:
        return self.folder / _file_name(key)

    def get_draft(self, key: str) -> Optional[Draft]:
        path = self.path(key)
        if not path.exists():
            return None
        try:
            return load_draft(path)
        except RecordError as exc:
            logger.warning("Ignoring unreadable draft %s: %s", path, exc)
            return None
        except OSError as exc:
            raise StoreError(f"Cannot read draft {key}: {exc}") from exc

    def set_draft(self, key: str, draft: Draft) -> None:
        try:
            save_draft(draft, self.path(key))
        except OSError as exc:
            raise StoreError(f"Cannot write draft {key}: {exc}") from exc

    def delete_draft(self, key: str) -> None:
        try:
            self.path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot delete draft {key}: {exc}") from exc
