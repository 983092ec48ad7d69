"""Recipe store — one JSON document per recipe id on the local file system.

Lifecycle is ``draft -> stable`` only. Writes go to a unique temp file that
is fsynced and then renamed over the record, so a reader never sees a
partial record. ``promote`` holds a per-id lock (in-process lock plus an
exclusive lock file for other processes) while it re-reads and transitions
the record, so two racing promotions cannot both succeed.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import threading
import time
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ValidationError

from sextant.core.recipe import LifecycleEvent, LifecycleState, Recipe
from sextant.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DRAFT_NOTE = "Recipe stored as draft"
PROMOTION_NOTE = "Promoted to stable"

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_LOCK_POLL_INTERVAL_S = 0.01


class RecipeStoreError(Exception):
    """Base class for recipe store failures."""


class RecipeNotFound(RecipeStoreError):
    def __init__(self, recipe_id: str) -> None:
        self.recipe_id = recipe_id
        super().__init__(f"Recipe {recipe_id} not found")


class RecipeAlreadyStable(RecipeStoreError):
    def __init__(self, recipe_id: str) -> None:
        self.recipe_id = recipe_id
        super().__init__(f"Recipe {recipe_id} is already stable")


class InvalidLifecycleTransition(RecipeStoreError):
    """Raised for any lifecycle change other than storing a draft or draft -> stable."""


class DocumentTarget(BaseModel):
    domain: str
    path: str


class StoredRecipe(BaseModel):
    """Immutable snapshot of a persisted recipe plus store metadata."""

    id: str
    recipe: Recipe
    created_at: datetime
    updated_at: datetime
    promoted_at: datetime | None = None
    document_target: DocumentTarget | None = None

    model_config = {"frozen": True}

    @property
    def state(self) -> LifecycleState:
        return self.recipe.lifecycle.state


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class LocalFileSystemRecipeStore:
    """Recipes persisted as ``<directory>/<id>.json``."""

    def __init__(
        self,
        directory: Path,
        *,
        now: Callable[[], datetime] = _utcnow,
        lock_timeout_s: float = 5.0,
        stale_lock_s: float = 60.0,
    ) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._now = now
        self._lock_timeout_s = lock_timeout_s
        self._stale_lock_s = stale_lock_s
        self._locks: dict[str, _LockEntry] = {}
        self._locks_guard = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    # --- Public API ---

    def create_draft(
        self,
        recipe: Recipe,
        *,
        actor: str | None = None,
        notes: str | None = None,
        document_target: DocumentTarget | None = None,
        when: datetime | None = None,
    ) -> StoredRecipe:
        """Persist ``recipe`` in the draft state, assigning an id when it has none."""
        if recipe.lifecycle.state is not LifecycleState.DRAFT:
            raise InvalidLifecycleTransition(
                f"Only draft recipes may be stored (got {recipe.lifecycle.state.value})"
            )
        recipe_id = recipe.id or str(uuid.uuid4())
        self._check_id(recipe_id)
        now = when or self._now()

        history = list(recipe.lifecycle.history)
        if not history or history[-1].state is not LifecycleState.DRAFT:
            history.append(
                LifecycleEvent(
                    state=LifecycleState.DRAFT, at=now, actor=actor, notes=notes or DRAFT_NOTE
                )
            )
        normalized = Recipe.model_validate(
            {
                **recipe.model_dump(),
                "id": recipe_id,
                "updated_at": now,
                "lifecycle": {
                    "state": LifecycleState.DRAFT,
                    "since": recipe.lifecycle.since,
                    "history": [event.model_dump() for event in history],
                },
            }
        )

        with self._record_lock(recipe_id):
            existing = self._read(recipe_id)
            if existing is not None and existing.state is not LifecycleState.DRAFT:
                raise InvalidLifecycleTransition(
                    f"Recipe {recipe_id} is {existing.state.value}; drafts cannot replace it"
                )
            record = StoredRecipe(
                id=recipe_id,
                recipe=normalized,
                created_at=existing.created_at if existing else now,
                updated_at=now,
                document_target=document_target,
            )
            self._write(record)
        logger.info("Stored recipe %s (%s) as draft", recipe_id, recipe.name)
        return record

    def promote(
        self,
        recipe_id: str,
        *,
        actor: str | None = None,
        notes: str | None = None,
        when: datetime | None = None,
    ) -> StoredRecipe:
        """Transition a draft to stable. Raises when the record is missing or not a draft."""
        if not _SAFE_ID_RE.match(recipe_id):
            raise RecipeNotFound(recipe_id)
        with self._record_lock(recipe_id):
            current = self._read(recipe_id)
            if current is None:
                raise RecipeNotFound(recipe_id)
            if current.state is LifecycleState.STABLE:
                self._reject(recipe_id, current.state)
                raise RecipeAlreadyStable(recipe_id)
            if current.state is not LifecycleState.DRAFT:
                self._reject(recipe_id, current.state)
                raise InvalidLifecycleTransition(
                    f"Only draft recipes can be promoted; {recipe_id} is {current.state.value}"
                )

            now = when or self._now()
            lifecycle = current.recipe.lifecycle
            promoted_recipe = Recipe.model_validate(
                {
                    **current.recipe.model_dump(),
                    "updated_at": now,
                    "updated_by": actor or current.recipe.updated_by,
                    "lifecycle": {
                        "state": LifecycleState.STABLE,
                        "since": now,
                        "history": [
                            *(event.model_dump() for event in lifecycle.history),
                            {
                                "state": LifecycleState.STABLE,
                                "at": now,
                                "actor": actor,
                                "notes": notes or PROMOTION_NOTE,
                            },
                        ],
                    },
                }
            )
            record = current.model_copy(
                update={"recipe": promoted_recipe, "updated_at": now, "promoted_at": now}
            )
            self._write(record)
        logger.info("Promoted recipe %s to stable", recipe_id)
        return record

    def list(self, *, state: LifecycleState | None = None) -> list[StoredRecipe]:
        """All records, optionally filtered by state, oldest update first."""
        records: list[StoredRecipe] = []
        for path in sorted(self._directory.glob("*.json")):
            if not path.is_file():
                continue
            record = self._read_path(path)
            if record is None:
                continue
            if state is not None and record.state is not state:
                continue
            records.append(record)
        return sorted(records, key=lambda record: record.updated_at)

    def get_by_id(self, recipe_id: str) -> StoredRecipe | None:
        if not _SAFE_ID_RE.match(recipe_id):
            return None
        return self._read(recipe_id)

    def get_latest_stable(self) -> StoredRecipe | None:
        stable = self.list(state=LifecycleState.STABLE)
        return stable[-1] if stable else None

    # --- Persistence ---

    @staticmethod
    def _check_id(recipe_id: str) -> None:
        if not _SAFE_ID_RE.match(recipe_id):
            raise RecipeStoreError(f"Recipe id {recipe_id!r} is not a valid file name")

    def _record_path(self, recipe_id: str) -> Path:
        return self._directory / f"{recipe_id}.json"

    def _read(self, recipe_id: str) -> StoredRecipe | None:
        return self._read_path(self._record_path(recipe_id))

    def _read_path(self, path: Path) -> StoredRecipe | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return StoredRecipe.model_validate_json(raw)
        except ValidationError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.RECIPE_STORE_CORRUPT_RECORD,
                message=f"Invalid recipe record in {path.name}",
                suppressed=False,
                details={"path": str(path), "errors": exc.error_count()},
            )
            raise RecipeStoreError(f"Invalid recipe record in {path.name}") from exc

    def _write(self, record: StoredRecipe) -> None:
        target = self._record_path(record.id)
        temp_path = self._directory / f"{record.id}.{uuid.uuid4().hex}.tmp"
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json(indent=2) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        except OSError as exc:
            if temp_path.exists():
                temp_path.unlink()
            emit_structured_error(
                logger,
                code=ErrorCode.RECIPE_STORE_WRITE_FAILED,
                message=str(exc),
                suppressed=False,
                details={"recipe_id": record.id},
            )
            raise RecipeStoreError(f"Failed to write recipe {record.id}") from exc

    def _reject(self, recipe_id: str, state: LifecycleState) -> None:
        emit_structured_error(
            logger,
            code=ErrorCode.RECIPE_PROMOTION_REJECTED,
            message=f"Promotion rejected for recipe in state {state.value}",
            suppressed=False,
            details={"recipe_id": recipe_id},
        )

    # --- Locking ---

    @contextlib.contextmanager
    def _record_lock(self, recipe_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(recipe_id, _LockEntry())
            entry.users += 1
        try:
            if not entry.lock.acquire(timeout=self._lock_timeout_s):
                raise RecipeStoreError(f"Timed out waiting for lock on recipe {recipe_id}")
            try:
                with self._file_lock(recipe_id):
                    yield
            finally:
                entry.lock.release()
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[recipe_id]

    def _lock_is_stale(self, lock_path: Path) -> bool:
        """A lock file whose owner process is gone, or that is older than ``stale_lock_s``."""
        try:
            stat = lock_path.stat()
            owner = lock_path.read_text(encoding="ascii").strip()
        except (FileNotFoundError, UnicodeDecodeError):
            return False
        if owner.isdigit() and os.name == "posix":
            try:
                os.kill(int(owner), 0)
            except ProcessLookupError:
                return True
            except PermissionError:
                pass
        return time.time() - stat.st_mtime > self._stale_lock_s

    def _reclaim(self, lock_path: Path) -> None:
        logger.warning("Removing stale lock file %s", lock_path.name)
        with contextlib.suppress(FileNotFoundError):
            lock_path.unlink()

    @contextlib.contextmanager
    def _file_lock(self, recipe_id: str) -> Iterator[None]:
        lock_path = self._directory / f"{recipe_id}.lock"
        deadline = time.monotonic() + self._lock_timeout_s
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if self._lock_is_stale(lock_path):
                    self._reclaim(lock_path)
                    continue
                if time.monotonic() >= deadline:
                    raise RecipeStoreError(
                        f"Timed out waiting for lock file {lock_path.name}"
                    ) from None
                time.sleep(_LOCK_POLL_INTERVAL_S)
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            yield
        finally:
            with contextlib.suppress(FileNotFoundError):
                lock_path.unlink()
