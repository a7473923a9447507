# =============================================
# File: app/services/profiles.py
# Purpose: User search-profile store backed by JSON
# =============================================
from __future__ import annotations
import json
import os
import threading
from typing import Dict, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from app.services.models import UserSearchProfile

_PROFILES_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "profiles", "profiles.json")


class ProfileService(Protocol):
    def get_search_profile(self, user_id: str) -> Optional[UserSearchProfile]: ...


class ProfileStore:
    """
    Search preferences per user:
    - preferred_categories, price_range, location_preferences, quality_preference
    Persistence: JSON file (thread-safe best-effort). If the file/folder doesn't
    exist, it is created on first write. path=None keeps profiles in memory only.
    """
    def __init__(self, path: Optional[str] = _PROFILES_PATH) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._mem: Dict[str, Dict] = {}
        self._load()

    def _load(self) -> None:
        if not self._path:
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                self._mem = json.load(f)
        except FileNotFoundError:
            self._mem = {}
        except ValueError as e:
            logger.warning(f"[profiles] unreadable profile file {self._path}: {e}")
            self._mem = {}

    def _flush(self) -> None:
        if not self._path:
            return
        os.makedirs(os.path.dirname(self._path), exist_ok=True)
        tmp = self._path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._mem, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self._path)

    def set_profile(self, user_id: str, profile: UserSearchProfile) -> None:
        with self._lock:
            self._mem[user_id] = profile.model_dump(mode="json")
            self._flush()

    def get_search_profile(self, user_id: str) -> Optional[UserSearchProfile]:
        with self._lock:
            raw = self._mem.get(user_id)
        if raw is None:
            return None
        try:
            return UserSearchProfile.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[profiles] invalid profile for {user_id}: {e.error_count()} errors")
            return None


def build_profile_store() -> ProfileStore:
    return ProfileStore(os.getenv("PROFILES_PATH", _PROFILES_PATH))
