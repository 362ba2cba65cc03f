from __future__ import annotations

from wkpm.core.providers.base import SourceProvider, filter_releases
from wkpm.core.providers.github import GitHubProvider
from wkpm.core.providers.models import Release
from wkpm.core.providers.registry import RegistryProvider

__all__ = ["GitHubProvider", "RegistryProvider", "Release", "SourceProvider", "filter_releases"]
