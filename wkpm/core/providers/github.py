from __future__ import annotations

"""
Git-host (GitHub) source provider.

WHY THIS FILE EXISTS:
Most modules live in GitHub repositories, many of them private. This provider
probes the repository anonymously, walks the operator through supplying a
token when the host answers 404 (private and missing look the same), falls back
to the default branch when a repository publishes no releases, and downloads
archives while only ever sending the token to GitHub-owned hosts.
"""

import re
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests

from wkpm.core.errors import IntegrityError, ModuleError, NetworkError
from wkpm.core.providers.archive import parse_checksum_file
from wkpm.core.providers.base import ProgressReporter, SourceProvider, filter_releases
from wkpm.core.providers.models import Release
from wkpm.core.prompts import Prompter


API_BASE = "https://api.github.com"
USER_AGENT = "WebKernel-Installer"
API_VERSION = "2022-11-28"
MAX_REDIRECTS = 10
CONNECT_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 600
REGISTRY_HOSTS = {"webkernelphp.com"}

_URL_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s]+?)(?:\.git)?/?$", re.IGNORECASE)
_SHORT_RE = re.compile(r"([^/\s:]+)/([^/\s:]+)")


def format_bytes(n: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(n)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def is_github_host(host: str) -> bool:
    host = (host or "").lower()
    return (
        host == "github.com"
        or host.endswith(".github.com")
        or host == "githubusercontent.com"
        or host.endswith(".githubusercontent.com")
    )


def parse_identifier(identifier: str) -> Tuple[str, str]:
    s = str(identifier or "").strip()
    m = _URL_RE.search(s)
    if m:
        return m.group(1), m.group(2)
    m = _SHORT_RE.fullmatch(s)
    if m:
        return m.group(1), m.group(2)
    raise ModuleError(f"Invalid GitHub identifier: {identifier}")


class GitHubProvider(SourceProvider):
    name = "github"

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        insecure: bool = False,
        config: Any = None,
        prompter: Optional[Prompter] = None,
        session: Any = None,
        api_base: str = API_BASE,
        request_timeout: float = CONNECT_TIMEOUT,
        download_timeout: float = DOWNLOAD_TIMEOUT,
        logger: Any = None,
    ):
        super().__init__(prompter=prompter, logger=logger)
        self.token = (token or "").strip() or None
        self.insecure = bool(insecure)
        self.config = config
        self.session = session or requests.Session()
        self.api_base = api_base.rstrip("/")
        self.request_timeout = float(request_timeout)
        self.download_timeout = float(download_timeout)
        self.token_loaded_from_config = False

    # ---- SourceProvider ----
    def supports(self, identifier: str) -> bool:
        s = str(identifier or "").strip()
        if _URL_RE.search(s):
            return True
        m = _SHORT_RE.fullmatch(s)
        if not m:
            return False
        return m.group(1).lower() not in REGISTRY_HOSTS

    def fetch_releases(self, identifier: str, include_prereleases: bool = False) -> Optional[List[Release]]:
        owner, repo = parse_identifier(identifier)

        if not self.token and self.config is not None:
            loaded = self.config.get_github_token(owner, repo)
            if isinstance(loaded, str) and loaded.strip():
                self.token = loaded.strip()
                self.token_loaded_from_config = True

        self._ensure_repository_access(owner, repo)
        return self._fetch(owner, repo, include_prereleases)

    def download_release(self, release: Release, target_dir: str) -> bool:
        if not release.download_url:
            raise NetworkError(f"Release {release.tag} has no download URL.")

        self.prompter.info("Starting download...")
        content = self._download(release.download_url)
        release = self._resolve_checksum(release)
        return self._extract(content, target_dir, release)

    # ---- repository access ----
    def _headers(self, *, auth: bool = True) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": USER_AGENT,
        }
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, url: str, *, auth: bool = True):  # noqa: ANN202
        try:
            return self.session.get(url, headers=self._headers(auth=auth), timeout=self.request_timeout, verify=not self.insecure)
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}", url=url) from e

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.api_base}/repos/{owner}/{repo}"

    def _ensure_repository_access(self, owner: str, repo: str) -> None:
        url = self._repo_url(owner, repo)
        anon = self._get(url, auth=False)
        if anon.ok:
            return
        if anon.status_code != 404:
            raise NetworkError(f"Failed to detect repository visibility. Status: {anon.status_code}. Response: {anon.text[:300]}")

        confirmed = self.prompter.confirm(
            f"Repository {owner}/{repo} returned 404. It could be private or non-existent. Are you sure it exists?",
            default=False,
        )
        if not confirmed:
            raise NetworkError(f"Repository {owner}/{repo} not confirmed by user.")

        if not self.token:
            self._ask_for_token(owner, repo)

        resp = self._get(url)
        if resp.ok:
            return
        if resp.status_code != 404:
            raise NetworkError(f"Failed to access repository. Status: {resp.status_code}. Response: {resp.text[:300]}")

        should_retry = self.token_loaded_from_config or self.prompter.confirm(
            "Token cannot access this repository (404). Try a different token?",
            default=True,
        )
        if not should_retry:
            raise NetworkError(f"Cannot access {owner}/{repo} with provided token. Check token permissions.")

        self._show_token_help(owner, repo)
        self._ask_for_token(owner, repo)

        retry = self._get(url)
        if retry.ok:
            return
        if retry.status_code == 404:
            raise NetworkError(
                f"Still cannot access {owner}/{repo} with new token. "
                "If using fine-grained token: go to token settings and add this repository to 'Repository access'. "
                "Or use a classic token with 'repo' scope instead."
            )
        raise NetworkError(f"Failed to access repository. Status: {retry.status_code}. Response: {retry.text[:300]}")

    def _show_token_help(self, owner: str, repo: str) -> None:
        self.prompter.warning("RECOMMENDED: Use a classic token with 'repo' scope")
        self.prompter.info("Classic: https://github.com/settings/tokens -> Generate (classic) -> Select 'repo'")
        self.prompter.info(
            "Fine-grained: https://github.com/settings/personal-access-tokens -> "
            f"Add {owner}/{repo} to 'Repository access' -> Enable Contents+Metadata permissions"
        )

    def _ask_for_token(self, owner: str, repo: str) -> None:
        self.prompter.info("This repository is private and requires authentication.")
        self.token = self.prompter.secret("Enter GitHub Token (classic or fine-grained)", placeholder="ghp_... or github_pat_...").strip()
        self.token_loaded_from_config = False

        scope = self.prompter.select(
            "Save token for future use?",
            {
                "repo": f"This repository only: {owner}/{repo}",
                "owner": f"All repositories from: {owner}",
                "session": "Session only (not saved)",
            },
            default="session",
        )
        if scope == "session":
            return
        if self.config is None:
            self.prompter.warning("No config store available; token kept for this session only.")
            return
        self.config.save_github_token(owner, self.token, repo if scope == "repo" else None)
        self.prompter.success("Token saved.")

    # ---- releases ----
    def _fetch(self, owner: str, repo: str, include_prereleases: bool) -> List[Release]:
        resp = self._get(f"{self._repo_url(owner, repo)}/releases?per_page=100")
        if resp.status_code == 404:
            self.prompter.info("No releases found. Attempting branch fallback...")
            return self._branch_fallback(owner, repo)
        if not resp.ok:
            raise NetworkError(f"Failed to fetch releases. Status: {resp.status_code}. Response: {resp.text[:300]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError("Releases endpoint returned invalid JSON.") from e

        if not data or not isinstance(data, list):
            self.prompter.info("No releases found. Using default branch as fallback.")
            return self._branch_fallback(owner, repo)

        releases = [Release.from_github(r) for r in data if isinstance(r, dict) and r.get("tag_name")]
        filtered = filter_releases(releases, include_prereleases=include_prereleases)
        if not filtered:
            self.prompter.info("No suitable releases found. Using default branch as fallback.")
            return self._branch_fallback(owner, repo)
        return filtered

    def _branch_fallback(self, owner: str, repo: str) -> List[Release]:
        resp = self._get(self._repo_url(owner, repo))
        if not resp.ok:
            raise NetworkError(f"Unable to retrieve repository information. Status: {resp.status_code}")
        try:
            info = resp.json()
        except ValueError as e:
            raise NetworkError("Repository endpoint returned invalid JSON.") from e
        branch = str((info or {}).get("default_branch") or "main")
        self.prompter.info(f"Using default branch: {branch}")
        return [
            Release(
                tag=branch,
                name=f"Default Branch: {branch}",
                download_url=f"{self._repo_url(owner, repo)}/zipball/{branch}",
                published_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                is_branch_fallback=True,
            )
        ]

    # ---- download ----
    def _send_token_to(self, host: str) -> bool:
        return is_github_host(host) or host == (urlparse(self.api_base).hostname or "")

    def _download(self, url: str) -> bytes:
        current = url
        for _ in range(MAX_REDIRECTS):
            headers = {"User-Agent": USER_AGENT}
            host = (urlparse(current).hostname or "").lower()
            if self.token and self._send_token_to(host):
                headers["Authorization"] = f"Bearer {self.token}"
                headers["Accept"] = "application/vnd.github+json"
                headers["X-GitHub-Api-Version"] = API_VERSION
            try:
                resp = self.session.get(
                    current,
                    headers=headers,
                    timeout=(self.request_timeout, self.download_timeout),
                    allow_redirects=False,
                    stream=True,
                    verify=not self.insecure,
                )
            except requests.RequestException as e:
                raise NetworkError(f"Download failed: {e}", url=current) from e

            try:
                status = int(resp.status_code)
                if 300 <= status < 400:
                    location = resp.headers.get("Location")
                    if not location:
                        raise NetworkError("Redirect without Location header.")
                    current = urljoin(current, location)
                    continue
                if status == 200:
                    body = self._read_body(resp)
                    self.prompter.success(f"Downloaded {format_bytes(len(body))}")
                    return body
                raise NetworkError(f"Download failed with HTTP {status}", url=current)
            finally:
                resp.close()
        raise NetworkError("Too many redirects.")

    def _read_body(self, resp) -> bytes:  # noqa: ANN001
        total = int(resp.headers.get("Content-Length") or 0)
        reporter = ProgressReporter(self.prompter.progress)
        chunks: List[bytes] = []
        downloaded = 0
        try:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                chunks.append(chunk)
                downloaded += len(chunk)
                reporter.update(downloaded, total)
        except requests.RequestException as e:
            raise NetworkError(f"Download interrupted: {e}") from e
        return b"".join(chunks)

    def _resolve_checksum(self, release: Release) -> Release:
        if release.checksum or not release.checksum_url:
            return release
        text = self._download(release.checksum_url).decode("utf-8", errors="replace")
        digest = parse_checksum_file(text)
        if not digest:
            raise IntegrityError(f"Checksum asset for {release.tag} is empty.")
        return release.model_copy(update={"checksum": digest})
