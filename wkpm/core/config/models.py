from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InstallerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lock_timeout_seconds: float = Field(default=300, ge=0)
    lock_poll_interval_seconds: float = Field(default=0.1, gt=0)
    stale_lock_seconds: float = Field(default=3600, ge=0)
    backup_keep_count: int = Field(default=5, ge=1)
    hook_timeout_seconds: float = Field(default=60, gt=0)
    hook_interpreter: List[str] = Field(default_factory=lambda: ["php"])
    composer_binary: str = "composer"
    dump_autoload: bool = True
    kernel_repo: str = "webkernelphp/bootstrap"
    preserved_kernel_dirs: List[str] = Field(default_factory=lambda: ["var-elements"])
    registry_api_base: str = "https://webkernelphp.com/api"
    request_timeout_seconds: float = Field(default=30, gt=0)
    download_timeout_seconds: float = Field(default=600, gt=0)
    registry_download_timeout_seconds: float = Field(default=120, gt=0)
    module_dir: str = Field(default="app-platform", min_length=1)
    bootstrap_dir: str = Field(default="bootstrap", min_length=1)

    @field_validator("hook_interpreter", mode="before")
    @classmethod
    def _norm_interpreter(cls, v: Any) -> List[str]:
        if v is None or v == "":
            return ["php"]
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            out = [str(x) for x in v if str(x or "").strip()]
            return out or ["php"]
        return v

    @field_validator("preserved_kernel_dirs", mode="before")
    @classmethod
    def _norm_preserved(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            out: List[str] = []
            for item in v:
                s = str(item or "").strip().strip("/")
                if not s or ".." in s.split("/"):
                    continue
                out.append(s)
            return out
        return v


class OwnerTokens(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    # encrypted blobs ({"v", "nonce", "ciphertext"}) or None
    global_: Optional[Dict[str, Any]] = Field(default=None, alias="global")
    repos: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class ConfigRecord(BaseModel):
    """
    On-disk shape of .webkernel/config.json.
    """

    model_config = ConfigDict(extra="allow")

    github_tokens: Dict[str, OwnerTokens] = Field(default_factory=dict)
    registry_tokens: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[str] = None
