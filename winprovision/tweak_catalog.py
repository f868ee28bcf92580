"""Fixed service, registry tweak and bloatware tables."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple, TypeVar

WINDOWS_10 = "windows10"
WINDOWS_11 = "windows11"


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    display_name: str
    windows10: bool = True
    windows11: bool = True


@dataclass(frozen=True)
class RegistryTweakDescriptor:
    name: str
    path: str
    value_name: str
    value: int | str
    windows10: bool = True
    windows11: bool = True


@dataclass(frozen=True)
class BloatwarePackageDescriptor:
    name: str
    pattern: str
    windows10: bool = True
    windows11: bool = True


_Descriptor = TypeVar("_Descriptor", ServiceDescriptor, RegistryTweakDescriptor, BloatwarePackageDescriptor)


def applicable(items: Iterable[_Descriptor], os_release: str) -> list[_Descriptor]:
    if os_release == WINDOWS_11:
        return [item for item in items if item.windows11]
    return [item for item in items if item.windows10]


SERVICES: Tuple[ServiceDescriptor, ...] = (
    ServiceDescriptor("DiagTrack", "Connected User Experiences and Telemetry"),
    ServiceDescriptor("dmwappushservice", "Device Management WAP Push"),
    ServiceDescriptor("MapsBroker", "Downloaded Maps Manager"),
    ServiceDescriptor("RetailDemo", "Retail Demo Service"),
    ServiceDescriptor("Fax", "Fax"),
    ServiceDescriptor("WerSvc", "Windows Error Reporting Service"),
    ServiceDescriptor("XblAuthManager", "Xbox Live Auth Manager"),
    ServiceDescriptor("XblGameSave", "Xbox Live Game Save"),
    ServiceDescriptor("XboxNetApiSvc", "Xbox Live Networking Service"),
    ServiceDescriptor("XboxGipSvc", "Xbox Accessory Management Service"),
    ServiceDescriptor("WMPNetworkSvc", "Windows Media Player Network Sharing", windows11=False),
    ServiceDescriptor("lfsvc", "Geolocation Service"),
)

REGISTRY_TWEAKS: Tuple[RegistryTweakDescriptor, ...] = (
    RegistryTweakDescriptor(
        "Show file extensions",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
        "HideFileExt",
        0,
    ),
    RegistryTweakDescriptor(
        "Show hidden files",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
        "Hidden",
        1,
    ),
    RegistryTweakDescriptor(
        "Open Explorer to This PC",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
        "LaunchTo",
        1,
    ),
    RegistryTweakDescriptor(
        "Disable advertising ID",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\AdvertisingInfo",
        "Enabled",
        0,
    ),
    RegistryTweakDescriptor(
        "Disable telemetry",
        r"HKLM:\SOFTWARE\Policies\Microsoft\Windows\DataCollection",
        "AllowTelemetry",
        0,
    ),
    RegistryTweakDescriptor(
        "Disable Bing search in Start",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Search",
        "BingSearchEnabled",
        0,
    ),
    RegistryTweakDescriptor(
        "Disable tailored experiences",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Privacy",
        "TailoredExperiencesWithDiagnosticDataEnabled",
        0,
    ),
    RegistryTweakDescriptor(
        "Left-align taskbar",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
        "TaskbarAl",
        0,
        windows10=False,
    ),
    RegistryTweakDescriptor(
        "Hide taskbar widgets",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
        "TaskbarDa",
        0,
        windows10=False,
    ),
    RegistryTweakDescriptor(
        "Classic context menu",
        r"HKCU:\Software\Classes\CLSID\{86ca1aa0-34aa-4e8b-a509-50c905bae2a2}\InprocServer32",
        "",
        "",
        windows10=False,
    ),
    RegistryTweakDescriptor(
        "Hide Cortana button",
        r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
        "ShowCortanaButton",
        0,
        windows11=False,
    ),
)

BLOATWARE: Tuple[BloatwarePackageDescriptor, ...] = (
    BloatwarePackageDescriptor("Bing News", "Microsoft.BingNews"),
    BloatwarePackageDescriptor("Bing Weather", "Microsoft.BingWeather"),
    BloatwarePackageDescriptor("Get Started", "Microsoft.Getstarted"),
    BloatwarePackageDescriptor("Office Hub", "Microsoft.MicrosoftOfficeHub"),
    BloatwarePackageDescriptor("Solitaire Collection", "Microsoft.MicrosoftSolitaireCollection"),
    BloatwarePackageDescriptor("People", "Microsoft.People"),
    BloatwarePackageDescriptor("Feedback Hub", "Microsoft.WindowsFeedbackHub"),
    BloatwarePackageDescriptor("Maps", "Microsoft.WindowsMaps"),
    BloatwarePackageDescriptor("Xbox Game Overlay", "Microsoft.XboxGamingOverlay"),
    BloatwarePackageDescriptor("Groove Music", "Microsoft.ZuneMusic"),
    BloatwarePackageDescriptor("Movies & TV", "Microsoft.ZuneVideo"),
    BloatwarePackageDescriptor("Skype", "Microsoft.SkypeApp"),
    BloatwarePackageDescriptor("Candy Crush", "king.com.CandyCrush*"),
    BloatwarePackageDescriptor("3D Viewer", "Microsoft.Microsoft3DViewer", windows11=False),
    BloatwarePackageDescriptor("Clipchamp", "Clipchamp.Clipchamp", windows10=False),
    BloatwarePackageDescriptor("Dev Home", "Microsoft.Windows.DevHome", windows10=False),
)
