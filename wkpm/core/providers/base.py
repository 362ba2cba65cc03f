from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Optional

from wkpm.core.providers.archive import checksum_matches, extract_archive
from wkpm.core.providers.models import Release
from wkpm.core.prompts import Prompter


PROGRESS_THRESHOLDS = (10, 25, 50, 75, 90)


def filter_releases(releases: Iterable[Release], *, include_prereleases: bool) -> List[Release]:
    """
    Drafts are never returned; prereleases only on request. Order is kept.
    """
    out: List[Release] = []
    for r in releases:
        if r.draft:
            continue
        if r.prerelease and not include_prereleases:
            continue
        out.append(r)
    return out


class ProgressReporter:
    """
    Reports coarse download progress once per crossed threshold.
    """

    def __init__(self, callback: Callable[[int], None], thresholds: Iterable[int] = PROGRESS_THRESHOLDS):
        self.callback = callback
        self.thresholds = tuple(sorted(int(t) for t in thresholds))
        self._last = 0

    def update(self, downloaded: int, total: int) -> None:
        if total <= 0:
            return
        percent = int(downloaded * 100 / total)
        for threshold in self.thresholds:
            if percent >= threshold and self._last < threshold:
                self._last = threshold
                self.callback(threshold)
                break


class SourceProvider(ABC):
    """
    Provider interface.

    - supports()         -> does this provider understand the identifier?
    - fetch_releases()   -> releases newest first, or None when the source has no list
    - download_release() -> download, verify and extract into target_dir
    - verify_checksum()  -> True / raises IntegrityError
    """

    name: str = "base"

    def __init__(self, *, prompter: Optional[Prompter] = None, logger: Any = None):
        self.prompter = prompter or Prompter()
        self.logger = logger or logging.getLogger("wkpm")

    @abstractmethod
    def supports(self, identifier: str) -> bool:
        ...

    @abstractmethod
    def fetch_releases(self, identifier: str, include_prereleases: bool = False) -> Optional[List[Release]]:
        ...

    @abstractmethod
    def download_release(self, release: Release, target_dir: str) -> bool:
        ...

    def verify_checksum(self, content: bytes, release: Release) -> bool:
        return checksum_matches(content, release.checksum)

    def _extract(self, content: bytes, target_dir: str, release: Release) -> bool:
        self.verify_checksum(content, release)
        extract_archive(content, target_dir)
        self.logger.info(f"Extracted {release.tag} to {target_dir}")
        return True
