from __future__ import annotations

import re
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from wkpm.core.errors import AuthenticationRequired, ModuleError, NetworkError
from wkpm.core.providers.base import SourceProvider, filter_releases
from wkpm.core.providers.models import Release
from wkpm.core.prompts import Prompter


REGISTRY_HOST = "webkernelphp.com"
API_BASE = f"https://{REGISTRY_HOST}/api"
USER_AGENT = "WebKernel-Installer"

_WK_RE = re.compile(r"wk://(.+)")


class RegistryProvider(SourceProvider):
    """
    WebKernel registry: `wk://<name>` or `webkernelphp.com/<name>`.

    The registry embeds the sha256 digest in each release record and answers
    {"error": "authentication_required"} for modules that need a token.
    """

    name = "webkernel"

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        api_base: str = API_BASE,
        session: Any = None,
        request_timeout: float = 30,
        download_timeout: float = 120,
        prompter: Optional[Prompter] = None,
        logger: Any = None,
    ):
        super().__init__(prompter=prompter, logger=logger)
        self.token = (token or "").strip() or None
        self.api_base = api_base.rstrip("/")
        self.session = session or requests.Session()
        self.request_timeout = float(request_timeout)
        self.download_timeout = float(download_timeout)

    def supports(self, identifier: str) -> bool:
        s = str(identifier or "").strip()
        return s.startswith(f"{REGISTRY_HOST}/") or bool(_WK_RE.fullmatch(s))

    def parse_identifier(self, identifier: str) -> str:
        s = str(identifier or "").strip()
        m = _WK_RE.fullmatch(s)
        if m:
            name = m.group(1)
        elif s.startswith(f"{REGISTRY_HOST}/"):
            name = s[len(REGISTRY_HOST) + 1 :]
        else:
            name = s
        name = name.strip("/")
        if not name or any(c.isspace() for c in name):
            raise ModuleError(f"Invalid WebKernel module identifier: {identifier}")
        return name

    def _headers(self) -> dict:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch_releases(self, identifier: str, include_prereleases: bool = False) -> Optional[List[Release]]:
        name = self.parse_identifier(identifier)
        url = f"{self.api_base}/modules/{quote(name, safe='/')}/releases"
        if include_prereleases:
            url += "?include_prereleases=1"

        try:
            resp = self.session.get(url, headers=self._headers(), timeout=self.request_timeout)
        except requests.RequestException as e:
            raise NetworkError(f"Failed to contact WebKernel registry: {e}", url=url) from e

        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("error"):
            if data["error"] == "authentication_required":
                raise AuthenticationRequired(module=name)
            raise ModuleError(str(data["error"]), module=name)

        if resp.status_code >= 400:
            raise NetworkError(f"Failed to fetch releases from WebKernel registry (HTTP {resp.status_code})", url=url)
        if not isinstance(data, dict):
            raise NetworkError("WebKernel registry returned an unexpected response.", url=url)

        raw = data.get("releases")
        if raw is None:
            return None
        if not isinstance(raw, list):
            raise NetworkError("WebKernel registry returned a malformed releases list.", url=url)

        releases = [
            Release.from_registry(r) for r in raw if isinstance(r, dict) and (r.get("tag_name") or r.get("version"))
        ]
        return filter_releases(releases, include_prereleases=include_prereleases)

    def download_release(self, release: Release, target_dir: str) -> bool:
        if not release.download_url:
            raise ModuleError(f"Release {release.tag} has no download URL.")

        self.prompter.info("Starting download...")
        try:
            resp = self.session.get(release.download_url, headers=self._headers(), timeout=self.download_timeout)
        except requests.RequestException as e:
            raise NetworkError(f"Download failed from WebKernel registry: {e}") from e
        if resp.status_code >= 400:
            raise NetworkError(f"Download failed from WebKernel registry (HTTP {resp.status_code})")

        return self._extract(resp.content, target_dir, release)
