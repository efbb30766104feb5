from __future__ import annotations

import json
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from authgate.logging import get_logger
from authgate.storage.errors import ConstraintViolation, StoreError
from authgate.storage.models import (
    IMMUTABLE_USER_FIELDS,
    UNIQUE_USER_FIELDS,
    USER_FIELDS,
    Role,
    User,
    utcnow,
)


def _check_fields(keys, *, patch: bool = False) -> None:
    unknown = set(keys) - USER_FIELDS
    if unknown:
        raise ValueError(f"unknown user field(s): {', '.join(sorted(unknown))}")
    if patch:
        frozen = set(keys) & IMMUTABLE_USER_FIELDS
        if frozen:
            raise ValueError(f"user field(s) cannot be updated: {', '.join(sorted(frozen))}")


def _normalize(key: str, value: Any) -> Any:
    if key == "role" and value is not None:
        return Role.parse(value)
    if key == "email" and isinstance(value, str):
        return value.strip().lower()
    return value


def _matches(user: User, flt: Mapping[str, Any]) -> bool:
    return all(getattr(user, key) == _normalize(key, value) for key, value in flt.items())


class MemoryStore:
    """In-memory user store with optional JSON snapshots under ``fs_root``."""

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # RLock so uniqueness checks can run inside insert/update
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "users.json"

    def _commit(self, users: Dict[str, User]) -> None:
        """Write the snapshot for ``users`` first, then make it the live state."""
        self._persist_state(users)
        self.users = users

    def _persist_state(self, users: Dict[str, User]) -> None:
        if self.fs_root is None:
            return
        state = {"users": [u.to_record() for u in users.values()]}
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise StoreError(f"failed to persist user snapshot: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"failed to load user snapshot: {exc}") from exc
        self.users = {u["id"]: User.from_record(u) for u in data.get("users", [])}
        self.logger.info("memory_store_loaded", users=len(self.users))
        return True

    def _assert_unique(self, candidate: User, *, ignore_id: Optional[str] = None) -> None:
        for existing in self.users.values():
            if existing.id == ignore_id:
                continue
            for key in UNIQUE_USER_FIELDS:
                if getattr(existing, key) == getattr(candidate, key):
                    raise ConstraintViolation(f"{key} already exists", {"field": key})

    def verify_connection(self) -> None:
        return None

    def insert(self, user: User) -> User:
        with self._data_lock:
            if user.id in self.users:
                raise ConstraintViolation("id already exists", {"field": "id"})
            stored = replace(user, email=_normalize("email", user.email))
            self._assert_unique(stored)
            self._commit({**self.users, stored.id: stored})
            return replace(stored)

    def find_matching(self, flt: Mapping[str, Any]) -> List[User]:
        _check_fields(flt.keys())
        with self._data_lock:
            found = [replace(u) for u in self.users.values() if _matches(u, flt)]
        return sorted(found, key=lambda u: u.created_at)

    def update_matching(self, flt: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
        _check_fields(flt.keys())
        _check_fields(patch.keys(), patch=True)
        with self._data_lock:
            targets = [u for u in self.users.values() if _matches(u, flt)]
            updated = {}
            for user in targets:
                changes = {k: _normalize(k, v) for k, v in patch.items()}
                candidate = replace(user, **changes, updated_at=utcnow())
                self._assert_unique(candidate, ignore_id=user.id)
                for other in updated.values():
                    for key in UNIQUE_USER_FIELDS:
                        if getattr(other, key) == getattr(candidate, key):
                            raise ConstraintViolation(f"{key} already exists", {"field": key})
                updated[user.id] = candidate
            # All-or-nothing: apply only once every candidate passed the checks
            if updated:
                self._commit({**self.users, **updated})
            return len(updated)

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def update_by_id(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]:
        _check_fields(patch.keys(), patch=True)
        with self._data_lock:
            if user_id not in self.users:
                return None
            self.update_matching({"id": user_id}, patch)
            return replace(self.users[user_id])
