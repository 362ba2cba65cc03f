from __future__ import annotations

import json
import logging
import os
import shutil
import time
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from pydantic import ValidationError as PydanticValidationError

from wkpm.core.config.io import atomic_write_json, read_json_file
from wkpm.core.config.models import ConfigRecord, InstallerSettings, OwnerTokens
from wkpm.core.config.paths import WorkspacePaths
from wkpm.core.crypto import KeyFileError, aesgcm_decrypt, aesgcm_encrypt, load_or_create_key, read_key_file
from wkpm.core.errors import ConfigError


DEFAULT_OWNER = "webkernelphp"
DEFAULT_REGISTRY = "webkernelphp.com"


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class ConfigManager:
    """
    Persisted installer configuration: provider tokens (encrypted at rest) and
    a free-form settings map.

    File: .webkernel/config.json (0600)
    Key:  .webkernel/config.key  (32 bytes, 0600, created on first token write)
    """

    aad: bytes = b"wkpm.config.token.v1"

    def __init__(self, *, paths: Optional[WorkspacePaths] = None, logger: Any = None):
        self.paths = paths or WorkspacePaths(".")
        self.logger = logger or logging.getLogger("wkpm")
        self._record = self._load()

    # ---------- public API ----------
    @property
    def path(self) -> str:
        return self.paths.config_file

    def reload(self) -> None:
        self._record = self._load()

    def get_github_token(self, owner: str, repo: Optional[str] = None) -> Optional[str]:
        entry = self._record.github_tokens.get(owner)
        if entry is None:
            return None
        if repo and repo in entry.repos:
            return self._decrypt(entry.repos[repo], scope=f"{owner}/{repo}")
        if entry.global_:
            return self._decrypt(entry.global_, scope=owner)
        return None

    def save_github_token(self, owner: str, token: str, repo: Optional[str] = None) -> None:
        owner = str(owner or "").strip()
        if not owner:
            raise ConfigError("Token owner cannot be empty.")
        entry = self._record.github_tokens.get(owner) or OwnerTokens()
        blob = self._encrypt(token)
        if repo:
            entry.repos[str(repo)] = blob
        else:
            entry.global_ = blob
        self._record.github_tokens[owner] = entry
        self._save()
        self.logger.info(f"Saved GitHub token for {owner}/{repo}" if repo else f"Saved GitHub token for {owner}/*")

    def delete_github_token(self, owner: str, repo: Optional[str] = None) -> bool:
        entry = self._record.github_tokens.get(owner)
        if entry is None:
            return False
        if repo:
            if repo not in entry.repos:
                return False
            del entry.repos[repo]
        else:
            if entry.global_ is None:
                return False
            entry.global_ = None
        if entry.global_ is None and not entry.repos:
            del self._record.github_tokens[owner]
        self._save()
        return True

    def get_token(self, owner: Optional[str] = DEFAULT_OWNER, repo: Optional[str] = None) -> Optional[str]:
        return self.get_github_token(str(owner or DEFAULT_OWNER), repo)

    def save_token(self, token: str, owner: str = DEFAULT_OWNER) -> None:
        self.save_github_token(owner, token)

    def get_registry_token(self, host: str = DEFAULT_REGISTRY) -> Optional[str]:
        blob = self._record.registry_tokens.get(host)
        if not blob:
            return None
        return self._decrypt(blob, scope=host)

    def save_registry_token(self, token: str, host: str = DEFAULT_REGISTRY) -> None:
        self._record.registry_tokens[host] = self._encrypt(token)
        self._save()

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self._record.settings.get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        try:
            json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Setting {key!r} must be JSON-serializable.") from e
        self._record.settings[key] = value
        self._save()

    def installer_settings(self) -> InstallerSettings:
        raw = self._record.settings.get("installer") or {}
        if not isinstance(raw, dict):
            raise ConfigError("settings.installer must be an object.")
        try:
            return InstallerSettings.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid installer settings: {str(e)[:300]}") from e

    @property
    def updated_at(self) -> Optional[str]:
        return self._record.updated_at

    # ---------- internal ----------
    def _load(self) -> ConfigRecord:
        rr = read_json_file(self.path)
        if not rr.ok:
            if rr.error and rr.error != "missing":
                self._quarantine_corrupt(rr.error)
            return ConfigRecord()
        try:
            return ConfigRecord.model_validate(rr.data)
        except PydanticValidationError as e:
            raise ConfigError(f"Config file {self.path} has an unexpected shape: {str(e)[:300]}") from e

    def _quarantine_corrupt(self, reason: str) -> None:
        ts = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
        dst = f"{self.path}.{ts}.corrupt"
        try:
            shutil.move(self.path, dst)
            self.logger.warning(f"Corrupt config {self.path} ({reason}); moved to {dst}")
        except OSError as e:
            self.logger.warning(f"Corrupt config {self.path} ({reason}); unable to move aside: {e}")

    def _save(self) -> None:
        self._record.updated_at = _iso_now()
        data = self._record.model_dump(by_alias=True, exclude_none=False)
        atomic_write_json(self.path, data, private=True)

    def _encrypt(self, token: str) -> Dict[str, str]:
        token = str(token or "").strip()
        if not token:
            raise ConfigError("Token cannot be empty.")
        try:
            key = load_or_create_key(self.paths.key_file)
        except KeyFileError as e:
            raise ConfigError(str(e)) from e
        return aesgcm_encrypt(key, token.encode("utf-8"), aad=self.aad)

    def _decrypt(self, blob: Dict[str, Any], *, scope: str) -> str:
        try:
            key = read_key_file(self.paths.key_file)
            return aesgcm_decrypt(key, blob, aad=self.aad).decode("utf-8")
        except KeyFileError as e:
            raise ConfigError(f"Cannot decrypt stored token for {scope}: {e}") from e
        except (InvalidTag, KeyError, ValueError) as e:
            raise ConfigError(f"Cannot decrypt stored token for {scope}: key mismatch or corrupt value.") from e
