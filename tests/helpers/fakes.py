from __future__ import annotations

import io
import json
import threading
import time
import zipfile
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from wkpm.core.errors import PromptUnavailable
from wkpm.core.prompts import Prompter
from wkpm.core.providers.base import SourceProvider
from wkpm.core.providers.models import Release


class StubResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
    ):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = dict(headers or {})
        if text is not None:
            self.text = text
        elif json_data is not None:
            self.text = json.dumps(json_data)
        else:
            self.text = content.decode("utf-8", errors="replace")
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def iter_content(self, chunk_size: int = 1024):  # noqa: ANN201
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


Route = Union[StubResponse, List[StubResponse], Callable[..., StubResponse]]


class FakeSession:
    """
    Stands in for requests.Session. Routes are keyed by exact URL; a list
    route is consumed in order and its last item repeats.
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> StubResponse:
        self.calls.append({"url": url, "headers": dict(headers or {}), **kwargs})
        route = self.routes.get(url)
        if route is None:
            return StubResponse(404, text="not found")
        if callable(route):
            return route(url, headers or {})
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        return route

    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]


@dataclass
class ScriptedPrompter(Prompter):
    """
    Answers come from queues; an empty confirm/select queue falls back to the
    default, an empty secret queue refuses.
    """

    confirms: List[bool] = field(default_factory=list)
    secrets: List[str] = field(default_factory=list)
    selections: List[str] = field(default_factory=list)
    asked: List[str] = field(default_factory=list)
    messages: List[tuple] = field(default_factory=list)
    progress_values: List[int] = field(default_factory=list)

    def confirm(self, label: str, default: bool = False) -> bool:
        self.asked.append(label)
        if self.confirms:
            return self.confirms.pop(0)
        return default

    def secret(self, label: str, placeholder: str = "") -> str:
        self.asked.append(label)
        if not self.secrets:
            raise PromptUnavailable(f"Secret input required: {label}")
        return self.secrets.pop(0)

    def select(self, label: str, options: Dict[str, str], default: Optional[str] = None) -> str:
        self.asked.append(label)
        if self.selections:
            return self.selections.pop(0)
        return default if default is not None else next(iter(options))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def progress(self, percent: int) -> None:
        self.progress_values.append(percent)

    def text(self, level: Optional[str] = None) -> str:
        return "\n".join(m for lvl, m in self.messages if level is None or lvl == level)


class FakeTokenStore:
    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens: Dict[str, str] = dict(tokens or {})
        self.saved: List[tuple] = []

    def get_github_token(self, owner: str, repo: Optional[str] = None) -> Optional[str]:
        return self.tokens.get(f"{owner}/{repo}") or self.tokens.get(owner)

    def save_github_token(self, owner: str, token: str, repo: Optional[str] = None) -> None:
        self.saved.append((owner, token, repo))
        self.tokens[f"{owner}/{repo}" if repo else owner] = token


class FakeProvider(SourceProvider):
    """
    In-memory provider for `fake/<name>` identifiers. `archives` maps a tag to
    zip bytes; downloads go through the real checksum and extraction path.
    """

    name = "fake"

    def __init__(self, releases: List[Release], archives: Dict[str, bytes], *, delay: float = 0.0, **kwargs: Any):
        super().__init__(**kwargs)
        self.releases = list(releases)
        self.archives = dict(archives)
        self.delay = float(delay)
        self.fetch_calls: List[tuple] = []
        self.download_calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self._mu = threading.Lock()

    def supports(self, identifier: str) -> bool:
        return str(identifier).startswith("fake/")

    def fetch_releases(self, identifier: str, include_prereleases: bool = False) -> Optional[List[Release]]:
        self.fetch_calls.append((identifier, include_prereleases))
        return list(self.releases)

    def download_release(self, release: Release, target_dir: str) -> bool:
        with self._mu:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.download_calls.append(release.tag)
            if self.delay:
                time.sleep(self.delay)
            return self._extract(self.archives[release.tag], target_dir, release)
        finally:
            with self._mu:
                self.active -= 1


# ---- archive builders ----
MODULE_TEMPLATE = """<?php declare(strict_types=1);

namespace __PHP_NAMESPACE__;

use Webkernel\\Arcanes\\WebkernelApp;
use Webkernel\\Arcanes\\ModuleConfig;

final class __CLASS__ extends __EXTENDS__
{
    public function configureModule(): ModuleConfig
    {
        return $this->module()
            ->id('__ID__')
            ->name('__NAME__')
            ->version('__VERSION__')
            ->description('Posts and comments')
            ->installPath(
                in: '__INSTALL_PATH__',
                for: '__MODULE_NAMESPACE__'
            )
            ->supportElements([
                'views' => 'resources/views',
                'lang' => 'resources/lang',
            ])
            ->build();
    }

    public function boot(): void
    {
        if ($this->app->runningInConsole()) {
            $this->publishes(['config' => config_path('blog.php')]);
        }
    }
}
"""


def module_php(
    *,
    class_name: str = "BlogModule",
    php_namespace: str = "Acme\\Blog",
    extends: str = "WebkernelApp",
    module_id: str = "acme.blog",
    name: str = "Blog",
    version: str = "1.2.0",
    install_path: str = "app-platform/Acme/Blog",
    module_namespace: str = "App\\Module\\Acme\\Blog",
) -> str:
    # inside single-quoted PHP strings a backslash pair reads as one backslash
    replacements = {
        "__PHP_NAMESPACE__": php_namespace,
        "__CLASS__": class_name,
        "__EXTENDS__": extends,
        "__ID__": module_id,
        "__NAME__": name,
        "__VERSION__": version,
        "__INSTALL_PATH__": install_path,
        "__MODULE_NAMESPACE__": module_namespace.replace("\\", "\\\\"),
    }
    out = MODULE_TEMPLATE
    for key, value in replacements.items():
        out = out.replace(key, value)
    return out


def make_zip(files: Dict[str, Union[str, bytes]], *, wrapper: Optional[str] = None) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            arcname = f"{wrapper}/{name}" if wrapper else name
            zf.writestr(arcname, data.encode("utf-8") if isinstance(data, str) else data)
    return buf.getvalue()


def module_zip(
    extra_files: Optional[Dict[str, Union[str, bytes]]] = None,
    *,
    wrapper: Optional[str] = "acme-blog-3f2a9c1",
    declaration: Optional[str] = None,
    **php_kwargs: Any,
) -> bytes:
    class_name = php_kwargs.get("class_name", "BlogModule")
    files: Dict[str, Union[str, bytes]] = {
        f"{class_name}.php": declaration if declaration is not None else module_php(**php_kwargs),
        "src/Http/Controllers/PostController.php": "<?php\nnamespace App\\Module\\Acme\\Blog\\Http\\Controllers;\n",
        "resources/views/index.blade.php": "<h1>Blog</h1>\n",
    }
    files.update(extra_files or {})
    return make_zip(files, wrapper=wrapper)


def kernel_app_php(version: str) -> str:
    return (
        "<?php declare(strict_types=1);\n\n"
        "namespace Webkernel;\n\n"
        "final class Application\n{\n"
        f"    public const string VERSION = '{version}';\n"
        "}\n"
    )


def kernel_zip(version: str, extra_files: Optional[Dict[str, Union[str, bytes]]] = None) -> bytes:
    files: Dict[str, Union[str, bytes]] = {
        "app.php": kernel_app_php(version),
        "Application/Arcanes/BuildManifest.php": "<?php\n// manifest builder\n",
        "var-elements/.gitkeep": "",
    }
    files.update(extra_files or {})
    return make_zip(files, wrapper=f"bootstrap-{version}")


def release(tag: str, **kw: Any) -> Release:
    kw.setdefault("name", f"Release {tag}")
    kw.setdefault("published_at", "2026-03-01T10:00:00Z")
    kw.setdefault("download_url", f"https://example.invalid/{tag}.zip")
    return Release(tag=tag, **kw)
