"""Application catalog: static per-application install descriptors."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from winprovision.user_settings import UserSettings


class CatalogError(ValueError):
    pass


class InstallerKind(Enum):
    EXE = ".exe"
    MSI = ".msi"
    MSIXBUNDLE = ".msixbundle"

    @classmethod
    def from_extension(cls, extension: str | None) -> "InstallerKind | None":
        normalized = normalize_extension(extension)
        for kind in cls:
            if kind.value == normalized:
                return kind
        return None


class UrlKind(Enum):
    STATIC = "static"
    GITHUB_RELEASE = "github_release"


def normalize_extension(extension: str | None) -> str:
    if not extension:
        return ""
    cleaned = extension.strip().lower()
    if cleaned and not cleaned.startswith("."):
        cleaned = f".{cleaned}"
    return cleaned


@dataclass(frozen=True)
class DirectDownload:
    url: str
    extension: str
    url_kind: UrlKind = UrlKind.STATIC
    install_arguments: str = ""
    fallback_url: str | None = None
    verification_paths: Tuple[str, ...] = ()
    asset_pattern: str | None = None
    kind: InstallerKind | None = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extension", normalize_extension(self.extension))
        object.__setattr__(self, "verification_paths", tuple(self.verification_paths))
        object.__setattr__(self, "kind", InstallerKind.from_extension(self.extension))


@dataclass(frozen=True)
class ApplicationSpec:
    name: str
    package_manager_id: str | None = None
    direct_download: DirectDownload | None = None
    category: str = "Applications"
    display_name: str | None = None
    command: str | None = None

    @property
    def has_install_method(self) -> bool:
        return bool(self.package_manager_id) or self.direct_download is not None

    @property
    def verification_paths(self) -> Tuple[str, ...]:
        if self.direct_download is None:
            return ()
        return self.direct_download.verification_paths

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApplicationSpec":
        name = str(data.get("name") or "").strip()
        if not name:
            raise CatalogError("Catalog entry without a name")
        download_data = data.get("direct_download")
        download = None
        if download_data:
            if not isinstance(download_data, dict):
                raise CatalogError(f"{name}: direct_download must be an object")
            download = _download_from_dict(name, download_data)
        return cls(
            name=name,
            package_manager_id=_optional_str(data.get("package_manager_id")),
            direct_download=download,
            category=str(data.get("category") or "Applications"),
            display_name=_optional_str(data.get("display_name")),
            command=_optional_str(data.get("command")),
        )


@dataclass(frozen=True)
class AppCatalog:
    entries: List[ApplicationSpec]

    def get(self, name: str) -> ApplicationSpec | None:
        wanted = name.strip().lower()
        for entry in self.entries:
            if entry.name.lower() == wanted:
                return entry
        return None

    def names(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def select(self, names: Iterable[str]) -> List[ApplicationSpec]:
        wanted = {name.strip().lower() for name in names}
        return [entry for entry in self.entries if entry.name.lower() in wanted]

    def by_category(self) -> Dict[str, List[ApplicationSpec]]:
        grouped: Dict[str, List[ApplicationSpec]] = {}
        for entry in self.entries:
            grouped.setdefault(entry.category, []).append(entry)
        return grouped


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _download_from_dict(name: str, data: dict[str, Any]) -> DirectDownload:
    url = _optional_str(data.get("url"))
    if not url:
        raise CatalogError(f"{name}: direct_download.url is required")
    raw_kind = str(data.get("url_kind") or UrlKind.STATIC.value).lower()
    try:
        url_kind = UrlKind(raw_kind)
    except ValueError as exc:
        raise CatalogError(f"{name}: unknown url_kind {raw_kind!r}") from exc
    paths = data.get("verification_paths") or ()
    if isinstance(paths, str):
        paths = (paths,)
    extension = _optional_str(data.get("extension")) or Path(url.split("?", 1)[0]).suffix
    return DirectDownload(
        url=url,
        extension=extension,
        url_kind=url_kind,
        install_arguments=str(data.get("install_arguments") or ""),
        fallback_url=_optional_str(data.get("fallback_url")),
        verification_paths=tuple(str(path) for path in paths),
        asset_pattern=_optional_str(data.get("asset_pattern")),
    )


def load_catalog(path: Path | str) -> AppCatalog:
    """Read a JSON catalog: a list of entries or ``{"applications": [...]}``."""
    catalog_path = Path(path)
    try:
        data = json.loads(catalog_path.read_text(encoding="utf-8-sig"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"Unable to read catalog {catalog_path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("applications")
    if not isinstance(data, list):
        raise CatalogError(f"Catalog {catalog_path} must contain a list of applications")
    entries: List[ApplicationSpec] = []
    for item in data:
        if not isinstance(item, dict):
            raise CatalogError(f"Catalog {catalog_path} contains a non-object entry")
        entries.append(ApplicationSpec.from_dict(item))
    return AppCatalog(entries=entries)


def build_catalog(settings: UserSettings | None = None) -> AppCatalog:
    settings = settings or UserSettings()
    if settings.catalog_path.strip():
        return load_catalog(settings.catalog_path.strip())
    return AppCatalog(
        entries=[
            # Browsers
            ApplicationSpec(
                name="Google Chrome",
                category="Browsers",
                package_manager_id="Google.Chrome",
                command="chrome",
                direct_download=DirectDownload(
                    url="https://dl.google.com/chrome/install/googlechromestandaloneenterprise64.msi",
                    extension=".msi",
                    verification_paths=(
                        r"%ProgramFiles%\Google\Chrome\Application\chrome.exe",
                        r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe",
                    ),
                ),
            ),
            ApplicationSpec(
                name="Mozilla Firefox",
                category="Browsers",
                package_manager_id="Mozilla.Firefox",
                direct_download=DirectDownload(
                    url="https://download.mozilla.org/?product=firefox-latest-ssl&os=win64&lang=en-US",
                    extension=".exe",
                    install_arguments="/S",
                    verification_paths=(r"%ProgramFiles%\Mozilla Firefox\firefox.exe",),
                ),
            ),
            # Utilities
            ApplicationSpec(
                name="7-Zip",
                category="Utilities",
                package_manager_id="7zip.7zip",
                command="7z",
                direct_download=DirectDownload(
                    url="https://www.7-zip.org/a/7z2408-x64.msi",
                    extension=".msi",
                    verification_paths=(r"%ProgramFiles%\7-Zip\7z.exe",),
                ),
            ),
            ApplicationSpec(
                name="Notepad++",
                category="Utilities",
                package_manager_id="Notepad++.Notepad++",
                direct_download=DirectDownload(
                    url="https://api.github.com/repos/notepad-plus-plus/notepad-plus-plus/releases/latest",
                    url_kind=UrlKind.GITHUB_RELEASE,
                    extension=".exe",
                    install_arguments="/S",
                    asset_pattern=r"npp\.[\d.]+\.Installer\.x64\.exe$",
                    fallback_url=(
                        "https://github.com/notepad-plus-plus/notepad-plus-plus/releases/download/"
                        "v8.6.9/npp.8.6.9.Installer.x64.exe"
                    ),
                    verification_paths=(r"%ProgramFiles%\Notepad++\notepad++.exe",),
                ),
            ),
            ApplicationSpec(
                name="PowerToys",
                category="Utilities",
                package_manager_id="Microsoft.PowerToys",
                direct_download=DirectDownload(
                    url="https://api.github.com/repos/microsoft/PowerToys/releases/latest",
                    url_kind=UrlKind.GITHUB_RELEASE,
                    extension=".exe",
                    install_arguments="/quiet /norestart",
                    asset_pattern=r"PowerToysSetup-[\d.]+-x64\.exe$",
                    fallback_url=(
                        "https://github.com/microsoft/PowerToys/releases/download/"
                        "v0.83.0/PowerToysSetup-0.83.0-x64.exe"
                    ),
                    verification_paths=(
                        r"%ProgramFiles%\PowerToys\PowerToys.exe",
                        r"%LOCALAPPDATA%\PowerToys\PowerToys.exe",
                    ),
                ),
            ),
            ApplicationSpec(
                name="Windows Terminal",
                category="Utilities",
                package_manager_id="Microsoft.WindowsTerminal",
                command="wt",
                direct_download=DirectDownload(
                    url="https://api.github.com/repos/microsoft/terminal/releases/latest",
                    url_kind=UrlKind.GITHUB_RELEASE,
                    extension=".msixbundle",
                    asset_pattern=r"Microsoft\.WindowsTerminal_[\d.]+_8wekyb3d8bbwe\.msixbundle$",
                    fallback_url=(
                        "https://github.com/microsoft/terminal/releases/download/"
                        "v1.20.11781.0/Microsoft.WindowsTerminal_1.20.11781.0_8wekyb3d8bbwe.msixbundle"
                    ),
                    verification_paths=(r"%LOCALAPPDATA%\Microsoft\WindowsApps\wt.exe",),
                ),
            ),
            # Media
            ApplicationSpec(
                name="VLC media player",
                category="Media",
                package_manager_id="VideoLAN.VLC",
                direct_download=DirectDownload(
                    url="https://get.videolan.org/vlc/3.0.21/win64/vlc-3.0.21-win64.exe",
                    extension=".exe",
                    install_arguments="/L=1033 /S",
                    verification_paths=(r"%ProgramFiles%\VideoLAN\VLC\vlc.exe",),
                ),
            ),
            # Spotify refuses elevated installs from its web installer; winget only.
            ApplicationSpec(name="Spotify", category="Media", package_manager_id="Spotify.Spotify"),
            # Development
            ApplicationSpec(
                name="Git",
                category="Development",
                package_manager_id="Git.Git",
                command="git",
                direct_download=DirectDownload(
                    url="https://api.github.com/repos/git-for-windows/git/releases/latest",
                    url_kind=UrlKind.GITHUB_RELEASE,
                    extension=".exe",
                    install_arguments="/VERYSILENT /NORESTART",
                    asset_pattern=r"Git-[\d.]+-64-bit\.exe$",
                    fallback_url=(
                        "https://github.com/git-for-windows/git/releases/download/"
                        "v2.46.0.windows.1/Git-2.46.0-64-bit.exe"
                    ),
                    verification_paths=(r"%ProgramFiles%\Git\cmd\git.exe",),
                ),
            ),
            ApplicationSpec(
                name="Visual Studio Code",
                category="Development",
                package_manager_id="Microsoft.VisualStudioCode",
                display_name="Microsoft Visual Studio Code",
                command="code",
                direct_download=DirectDownload(
                    url="https://update.code.visualstudio.com/latest/win32-x64/stable",
                    extension=".exe",
                    install_arguments="/VERYSILENT /NORESTART /MERGETASKS=!runcode",
                    verification_paths=(
                        r"%ProgramFiles%\Microsoft VS Code\Code.exe",
                        r"%LOCALAPPDATA%\Programs\Microsoft VS Code\Code.exe",
                    ),
                ),
            ),
            ApplicationSpec(
                name="Python 3",
                category="Development",
                package_manager_id="Python.Python.3.12",
                display_name="Python 3.",
                command="python",
                direct_download=DirectDownload(
                    url="https://www.python.org/ftp/python/3.12.5/python-3.12.5-amd64.exe",
                    extension=".exe",
                    install_arguments="/quiet InstallAllUsers=1 PrependPath=1",
                    verification_paths=(
                        r"%ProgramFiles%\Python3*\python.exe",
                        r"%LOCALAPPDATA%\Programs\Python\Python3*\python.exe",
                    ),
                ),
            ),
            ApplicationSpec(
                name="Node.js LTS",
                category="Development",
                package_manager_id="OpenJS.NodeJS.LTS",
                display_name="Node.js",
                command="node",
                direct_download=DirectDownload(
                    url="https://nodejs.org/dist/v20.17.0/node-v20.17.0-x64.msi",
                    extension=".msi",
                    verification_paths=(r"%ProgramFiles%\nodejs\node.exe",),
                ),
            ),
            # Communication & gaming
            ApplicationSpec(
                name="Discord",
                category="Communication",
                package_manager_id="Discord.Discord",
                direct_download=DirectDownload(
                    url="https://discord.com/api/downloads/distributions/app/installers/latest?channel=stable&platform=win&arch=x64",
                    extension=".exe",
                    install_arguments="-s",
                    verification_paths=(r"%LOCALAPPDATA%\Discord\app-*\Discord.exe",),
                ),
            ),
            ApplicationSpec(
                name="Steam",
                category="Gaming",
                package_manager_id="Valve.Steam",
                direct_download=DirectDownload(
                    url="https://cdn.akamai.steamstatic.com/client/installer/SteamSetup.exe",
                    extension=".exe",
                    install_arguments="/S",
                    verification_paths=(r"%ProgramFiles(x86)%\Steam\steam.exe",),
                ),
            ),
        ]
    )


CATALOG = build_catalog()
