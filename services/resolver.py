"""Turns catalog download descriptors into concrete installer URLs."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Tuple

from services.downloads import fetch_json, filename_from_url
from winprovision.app_catalog import ApplicationSpec, DirectDownload, InstallerKind, UrlKind, normalize_extension

logger = logging.getLogger(__name__)

JsonFetcher = Callable[[str, float], Any]


class ResolutionFailed(RuntimeError):
    pass


@dataclass(frozen=True)
class ResolvedDownload:
    url: str
    extension: str
    install_arguments: str
    verification_paths: Tuple[str, ...]
    dynamic: bool = False

    @property
    def kind(self) -> InstallerKind | None:
        return InstallerKind.from_extension(self.extension)

    @property
    def filename(self) -> str:
        name = filename_from_url(self.url)
        if name and normalize_extension(Path(name).suffix) == self.extension:
            return name
        return f"installer{self.extension}"


class DownloadResolver:
    """Resolves static URLs directly and release-API entries by asset name.

    A release lookup gets exactly one attempt; any network error, timeout,
    malformed payload or asset-pattern miss falls back to the entry's static
    URL. ``ResolutionFailed`` is raised only when no tier yields a URL.
    """

    def __init__(
        self,
        apps: Iterable[ApplicationSpec] = (),
        *,
        timeout: float = 15.0,
        fetch_json: JsonFetcher | None = None,
    ) -> None:
        self._downloads = {app.name.lower(): app.direct_download for app in apps if app.direct_download}
        self._timeout = timeout
        self._fetch_json = fetch_json or _default_fetch

    def resolve(self, app_name: str) -> ResolvedDownload:
        download = self._downloads.get(app_name.strip().lower())
        if download is None:
            raise ResolutionFailed(f"No direct download configured for {app_name}")
        return self.resolve_download(app_name, download)

    def resolve_download(self, app_name: str, download: DirectDownload) -> ResolvedDownload:
        if download.url_kind is UrlKind.GITHUB_RELEASE:
            try:
                url = self._latest_release_asset(download)
            except Exception as exc:
                logger.warning("%s: release lookup failed (%s); using last known good URL", app_name, exc)
            else:
                return self._resolved(download, url, dynamic=True)
            static_url = download.fallback_url
        else:
            static_url = download.url or download.fallback_url
        if not static_url:
            raise ResolutionFailed(f"No download URL available for {app_name}")
        return self._resolved(download, static_url, dynamic=False)

    def _latest_release_asset(self, download: DirectDownload) -> str:
        payload = self._fetch_json(download.url, self._timeout)
        if not isinstance(payload, dict):
            raise ValueError("release payload is not an object")
        assets = payload.get("assets")
        if not isinstance(assets, list):
            raise ValueError("release payload has no assets")
        pattern = re.compile(download.asset_pattern or re.escape(download.extension) + "$", re.IGNORECASE)
        for asset in assets:
            if not isinstance(asset, dict):
                continue
            name = str(asset.get("name") or "")
            url = asset.get("browser_download_url")
            if url and pattern.search(name):
                return str(url)
        raise LookupError(f"no asset matching {pattern.pattern!r} in {payload.get('tag_name', 'latest release')}")

    def _resolved(self, download: DirectDownload, url: str, *, dynamic: bool) -> ResolvedDownload:
        extension = download.extension
        name = filename_from_url(url)
        if dynamic and name:
            extension = normalize_extension(Path(name).suffix) or extension
        return ResolvedDownload(
            url=url,
            extension=extension,
            install_arguments=download.install_arguments,
            verification_paths=download.verification_paths,
            dynamic=dynamic,
        )


def _default_fetch(url: str, timeout: float) -> Any:
    return fetch_json(url, timeout)
