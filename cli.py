"""CLI entrypoint for scripted provisioning (installs, verification, system tweaks)."""
from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import Callable, Sequence, TypeVar

from services.batch import RetryingInstaller, install_batch
from services.downloads import download_file
from services.installer import EngineConfig, create_engine
from services.privilege import ensure_admin
from services.run_log import format_result
from services.system_tweaks import SystemTweaksService, TweakResult, detect_os_release
from services.winget import WingetClient, bootstrap_winget
from winprovision.app_catalog import AppCatalog, CatalogError, build_catalog, load_catalog
from winprovision.logging_config import get_log_file_path, setup_logging
from winprovision.tweak_catalog import BLOATWARE, REGISTRY_TWEAKS, SERVICES, applicable
from winprovision.user_settings import ProfileStore, SelectionProfile, SettingsStore, UserSettings

logger = logging.getLogger("cli")

_Named = TypeVar("_Named")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Windows provisioning automation CLI")
    parser.add_argument("--profile", type=Path, help="Selection profile JSON (apps, services, tweaks, bloatware)")
    parser.add_argument("--catalog", type=Path, help="Custom application catalog JSON")
    parser.add_argument("--direct-only", action="store_true", help="Skip winget and download installers directly")
    parser.add_argument("--retries", type=int, help="Attempts per application (default from settings)")
    parser.add_argument("--workers", type=int, help="Concurrent installs (default from settings)")
    parser.add_argument("--no-elevate", action="store_true", help="Do not relaunch elevated")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List catalog applications and their install routes")

    install = subparsers.add_parser("install", help="Install applications")
    install.add_argument("apps", nargs="*", help="Application names (default: profile apps)")
    install.add_argument("--all", action="store_true", help="Install every catalog application")

    verify = subparsers.add_parser("verify", help="Report whether applications are installed")
    verify.add_argument("apps", nargs="*", help="Application names (default: whole catalog)")

    services = subparsers.add_parser("services", help="Disable Windows services")
    services.add_argument("names", nargs="*", help="Service names (default: profile or all applicable)")

    tweaks = subparsers.add_parser("tweaks", help="Apply registry tweaks")
    tweaks.add_argument("names", nargs="*", help="Tweak names (default: profile or all applicable)")
    tweaks.add_argument("--check", action="store_true", help="Only report the current values")

    debloat = subparsers.add_parser("debloat", help="Remove preinstalled Store apps")
    debloat.add_argument("names", nargs="*", help="Package names (default: profile or all applicable)")

    save = subparsers.add_parser("save-profile", help="Write a selection profile")
    save.add_argument("path", type=Path)
    save.add_argument("--apps", nargs="*", default=[])
    save.add_argument("--services", nargs="*", default=[])
    save.add_argument("--tweaks", nargs="*", default=[])
    save.add_argument("--bloatware", nargs="*", default=[])
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    setup_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    needs_admin = args.command in {"install", "services", "tweaks", "debloat"}
    if args.command == "tweaks" and args.check:
        needs_admin = False
    if needs_admin and not args.no_elevate and not ensure_admin(interactive=False):
        return 0
    settings = SettingsStore().load()
    try:
        catalog = load_catalog(args.catalog) if args.catalog else build_catalog(settings)
        profile = ProfileStore(args.profile).load() if args.profile else SelectionProfile()
    except (CatalogError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        return 2
    handlers: dict[str, Callable[[argparse.Namespace, UserSettings, AppCatalog, SelectionProfile], int]] = {
        "list": _cmd_list,
        "install": _cmd_install,
        "verify": _cmd_verify,
        "services": _cmd_services,
        "tweaks": _cmd_tweaks,
        "debloat": _cmd_debloat,
        "save-profile": _cmd_save_profile,
    }
    return handlers[args.command](args, settings, catalog, profile)


def _cmd_list(args, settings, catalog, profile) -> int:
    for category, entries in catalog.by_category().items():
        print(category)
        for spec in entries:
            routes = []
            if spec.package_manager_id:
                routes.append(f"winget:{spec.package_manager_id}")
            if spec.direct_download is not None:
                routes.append(f"{spec.direct_download.url_kind.value}:{spec.direct_download.extension}")
            print(f"  {spec.name:<24} {', '.join(routes) or 'no install method'}")
    return 0


def _engine_config(args: argparse.Namespace, settings: UserSettings) -> EngineConfig:
    config = EngineConfig.from_settings(settings)
    if args.direct_only:
        config = dataclasses.replace(config, direct_download_only=True)
    return config


def _cmd_install(args, settings, catalog, profile) -> int:
    if args.all:
        specs = list(catalog.entries)
    else:
        names = args.apps or profile.apps
        specs = catalog.select(names)
        unknown = sorted({name.lower() for name in names} - {spec.name.lower() for spec in specs})
        for name in unknown:
            logger.warning("Unknown application: %s", name)
    if not specs:
        logger.error("No applications selected; pass names, --all or --profile")
        return 2

    config = _engine_config(args, settings)
    winget = WingetClient(timeout=config.installer_timeout)
    if not config.direct_download_only:
        available = bootstrap_winget(
            winget,
            config.scratch_root,
            download_file=lambda url, dest: download_file(url, dest, timeout=config.network_timeout),
        )
        if not available:
            logger.warning("winget unavailable; continuing with direct downloads only")
            config = dataclasses.replace(config, direct_download_only=True)

    engine = create_engine(catalog.entries, config, winget_client=winget)
    installer = RetryingInstaller(
        engine,
        attempts=args.retries or settings.retry_attempts,
        base_delay=settings.retry_base_delay_seconds,
    )
    results = install_batch(
        installer,
        specs,
        max_workers=args.workers or settings.max_workers,
        progress_callback=lambda current, total, name: logger.info("[%d/%d] %s finished", current, total, name),
    )
    print()
    for result in results:
        print(format_result(result))
    engine.run_log.save(get_log_file_path().with_name("runs.log"))
    return 0 if all(result.succeeded for result in results) else 1


def _cmd_verify(args, settings, catalog, profile) -> int:
    specs = catalog.select(args.apps) if args.apps else list(catalog.entries)
    engine = create_engine(catalog.entries, _engine_config(args, settings))
    missing = 0
    for spec in specs:
        installed = engine.is_installed(spec)
        missing += 0 if installed else 1
        print(f"{spec.name:<24} {'installed' if installed else 'not installed'}")
    return 0 if missing == 0 else 1


def _select(items: Sequence[_Named], names: Sequence[str], fallback: Sequence[str]) -> list[_Named]:
    wanted = [name.lower() for name in (names or fallback)]
    if not wanted:
        return list(items)
    return [item for item in items if item.name.lower() in wanted]  # type: ignore[attr-defined]


def _report(results: Sequence[TweakResult]) -> int:
    for result in results:
        status = "OK" if result.success else "FAIL"
        print(f"[{status}] {result.name}: {result.message}")
    return 0 if all(result.success for result in results) else 1


def _cmd_services(args, settings, catalog, profile) -> int:
    release = detect_os_release()
    selected = _select(applicable(SERVICES, release), args.names, profile.services)
    return _report(SystemTweaksService().disable_services(selected))


def _cmd_tweaks(args, settings, catalog, profile) -> int:
    release = detect_os_release()
    selected = _select(applicable(REGISTRY_TWEAKS, release), args.names, profile.tweaks)
    service = SystemTweaksService()
    if args.check:
        return _report(service.check_registry_tweaks(selected))
    return _report(service.apply_registry_tweaks(selected))


def _cmd_debloat(args, settings, catalog, profile) -> int:
    release = detect_os_release()
    selected = _select(applicable(BLOATWARE, release), args.names, profile.bloatware)
    return _report(SystemTweaksService().remove_bloatware(selected))


def _cmd_save_profile(args, settings, catalog, profile) -> int:
    unknown = [name for name in args.apps if catalog.get(name) is None]
    if unknown:
        logger.warning("Profile lists unknown applications: %s", ", ".join(unknown))
    new_profile = SelectionProfile(
        apps=list(args.apps),
        services=list(args.services),
        tweaks=list(args.tweaks),
        bloatware=list(args.bloatware),
    )
    try:
        ProfileStore(args.path).save(new_profile)
    except OSError as exc:
        logger.error("Unable to write %s: %s", args.path, exc)
        return 1
    print(f"Saved profile to {args.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
