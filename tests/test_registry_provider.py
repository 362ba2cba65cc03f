from __future__ import annotations

import hashlib
import os

import pytest

from wkpm.core.errors import AuthenticationRequired, IntegrityError, ModuleError, NetworkError
from wkpm.core.providers.models import Release
from wkpm.core.providers.registry import API_BASE, RegistryProvider
from .helpers.fakes import FakeSession, ScriptedPrompter, StubResponse, module_zip

RELEASES = f"{API_BASE}/modules/blog/releases"


def test_supports_and_parse_identifier():
    p = RegistryProvider(session=FakeSession())
    assert p.supports("wk://blog")
    assert p.supports("webkernelphp.com/blog")
    assert not p.supports("acme/blog")
    assert p.parse_identifier("wk://blog") == "blog"
    assert p.parse_identifier("webkernelphp.com/acme/blog/") == "acme/blog"
    with pytest.raises(ModuleError):
        p.parse_identifier("wk://my blog")


def test_authentication_required_is_typed():
    session = FakeSession({RELEASES: StubResponse(401, json_data={"error": "authentication_required"})})
    with pytest.raises(AuthenticationRequired) as ei:
        RegistryProvider(session=session).fetch_releases("wk://blog")
    assert ei.value.code == "authentication_required"


def test_other_registry_error_is_module_error():
    session = FakeSession({RELEASES: StubResponse(404, json_data={"error": "Module not found"})})
    with pytest.raises(ModuleError) as ei:
        RegistryProvider(session=session).fetch_releases("wk://blog")
    assert "Module not found" in str(ei.value)
    assert not isinstance(ei.value, AuthenticationRequired)


def test_missing_release_list_is_none():
    session = FakeSession({RELEASES: StubResponse(200, json_data={"module": "blog"})})
    assert RegistryProvider(session=session).fetch_releases("wk://blog") is None


def test_server_failure_is_network_error():
    session = FakeSession({RELEASES: StubResponse(502, text="<html>bad gateway</html>")})
    with pytest.raises(NetworkError):
        RegistryProvider(session=session).fetch_releases("wk://blog")


def test_releases_are_filtered_and_token_is_sent():
    payload = {
        "releases": [
            {"version": "2.1.0-beta", "prerelease": True, "download_url": "https://webkernelphp.com/dl/blog-2.1.0-beta.zip"},
            {"version": "2.0.0", "download_url": "https://webkernelphp.com/dl/blog-2.0.0.zip", "sha256": "AB" * 32},
        ]
    }
    session = FakeSession(
        {
            RELEASES: StubResponse(200, json_data=payload),
            RELEASES + "?include_prereleases=1": StubResponse(200, json_data=payload),
        }
    )
    p = RegistryProvider("wk_live_1", session=session)

    stable = p.fetch_releases("wk://blog")
    assert [r.tag for r in stable] == ["2.0.0"]
    assert stable[0].checksum == "ab" * 32
    assert session.calls[0]["headers"]["Authorization"] == "Bearer wk_live_1"

    everything = p.fetch_releases("wk://blog", include_prereleases=True)
    assert [r.tag for r in everything] == ["2.1.0-beta", "2.0.0"]


def test_download_verifies_embedded_digest(tmp_path):
    body = module_zip()
    url = "https://webkernelphp.com/dl/blog-2.0.0.zip"
    session = FakeSession({url: StubResponse(200, content=body)})
    p = RegistryProvider(session=session, prompter=ScriptedPrompter())
    releases_payload = {"version": "2.0.0", "download_url": url, "sha256": hashlib.sha256(body).hexdigest()}

    good = Release.from_registry(releases_payload)
    target = str(tmp_path / "ok")
    assert p.download_release(good, target) is True
    assert os.path.isfile(os.path.join(target, "BlogModule.php"))

    bad = good.model_copy(update={"checksum": "f" * 64})
    with pytest.raises(IntegrityError):
        p.download_release(bad, str(tmp_path / "bad"))
    assert not os.path.exists(str(tmp_path / "bad"))


def test_download_http_failure(tmp_path):
    url = "https://webkernelphp.com/dl/blog-2.0.0.zip"
    session = FakeSession({url: StubResponse(403)})

    with pytest.raises(NetworkError):
        RegistryProvider(session=session).download_release(Release(tag="2.0.0", download_url=url), str(tmp_path / "t"))
