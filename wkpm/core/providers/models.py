from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Release(BaseModel):
    """
    A fetchable, versioned artifact. Immutable once fetched.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tag: str = Field(min_length=1)
    name: str = ""
    published_at: str = ""
    prerelease: bool = False
    draft: bool = False
    download_url: str = ""
    checksum: Optional[str] = None
    checksum_url: Optional[str] = None
    is_branch_fallback: bool = False

    @classmethod
    def from_github(cls, raw: Dict[str, Any]) -> "Release":
        assets = [a for a in (raw.get("assets") or []) if isinstance(a, dict)]
        zip_asset = next((a for a in assets if str(a.get("name") or "").lower().endswith(".zip")), None)
        sum_asset = next((a for a in assets if str(a.get("name") or "").lower().endswith(".sha256")), None)
        download_url = str((zip_asset or {}).get("browser_download_url") or raw.get("zipball_url") or "")
        inline = raw.get("checksum") or raw.get("sha256")
        checksum_url = str((sum_asset or {}).get("browser_download_url") or "")
        return cls(
            tag=str(raw.get("tag_name") or ""),
            name=str(raw.get("name") or ""),
            published_at=str(raw.get("published_at") or ""),
            prerelease=bool(raw.get("prerelease", False)),
            draft=bool(raw.get("draft", False)),
            download_url=download_url,
            checksum=str(inline).strip().lower() if inline else None,
            checksum_url=checksum_url or None,
            is_branch_fallback=bool(raw.get("is_branch_fallback", False)),
        )

    @classmethod
    def from_registry(cls, raw: Dict[str, Any]) -> "Release":
        digest = raw.get("sha256")
        return cls(
            tag=str(raw.get("tag_name") or raw.get("version") or ""),
            name=str(raw.get("name") or ""),
            published_at=str(raw.get("published_at") or ""),
            prerelease=bool(raw.get("prerelease", False)),
            draft=bool(raw.get("draft", False)),
            download_url=str(raw.get("download_url") or ""),
            checksum=str(digest).strip().lower() if digest else None,
        )

    def label(self) -> str:
        published = (self.published_at or "")[:10]
        flag = " [PRE-RELEASE]" if self.prerelease else ""
        return f"{self.tag} - {self.name} ({published}){flag}"
