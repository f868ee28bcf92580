"""HTTP helpers for installers and release metadata."""
from __future__ import annotations

import json
import re
import time
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any, Callable

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) winprovision"
CHUNK_SIZE = 256 * 1024


class DownloadFailed(RuntimeError):
    pass


def download_file(
    url: str,
    destination: Path,
    *,
    timeout: float = 60.0,
    status_callback: Callable[[str], None] | None = None,
    label: str | None = None,
) -> str:
    """Stream ``url`` into ``destination`` and return the final (redirected) URL."""
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response, destination.open("wb") as handle:
            final_url = response.geturl()
            last_time = time.monotonic()
            last_bytes = 0
            downloaded = 0
            while True:
                chunk = response.read(CHUNK_SIZE)
                if not chunk:
                    break
                handle.write(chunk)
                downloaded += len(chunk)
                now = time.monotonic()
                if status_callback and now - last_time >= 1.0:
                    speed = (downloaded - last_bytes) / max(now - last_time, 0.001)
                    status_callback(format_speed_label(label or "Downloading", speed))
                    last_time = now
                    last_bytes = downloaded
    except (urllib.error.URLError, OSError, ValueError) as exc:
        _remove_partial(destination)
        raise DownloadFailed(f"{url}: {exc}") from exc
    if downloaded == 0:
        _remove_partial(destination)
        raise DownloadFailed(f"{url}: empty response")
    return final_url


def fetch_json(url: str, timeout: float) -> Any:
    request = urllib.request.Request(
        url,
        headers={"User-Agent": USER_AGENT, "Accept": "application/vnd.github+json"},
    )
    with urllib.request.urlopen(request, timeout=timeout) as response:
        return json.loads(response.read().decode("utf-8", errors="replace"))


def filename_from_url(url: str) -> str | None:
    parsed = urllib.parse.urlparse(url)
    name = Path(urllib.parse.unquote(parsed.path)).name
    if not name or "." not in name:
        return None
    return name


def safe_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_").lower() or "app"


def format_speed(value: float) -> str:
    speed = max(value, 0.0)
    units = ["B/s", "KB/s", "MB/s", "GB/s", "TB/s"]
    for unit in units:
        if speed < 1024 or unit == units[-1]:
            return f"{speed:.1f} {unit}"
        speed /= 1024
    return f"{speed:.1f} B/s"


def format_speed_label(label: str, speed_bytes_per_sec: float) -> str:
    return f"{label} ({format_speed(speed_bytes_per_sec)})"


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass
