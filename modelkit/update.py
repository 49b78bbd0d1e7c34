"""Notifications about newer releases of the command-line tool."""

from __future__ import annotations

import json
import os
import re
import urllib.request
from dataclasses import dataclass

from modelkit import output
from modelkit.constants import UPDATE_NOTIFICATIONS_CONFIG_FILENAME

RELEASE_URL = "https://api.github.com/repos/jozu-ai/kitops/releases/latest"

# Semantic version with an optional leading 'v'. Groups: major, minor, patch,
# pre-release identifiers, build metadata.
_VERSION_TAG_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$",
    re.ASCII,
)
# Versions for comparison; the minor and patch parts may be left out
_COMPARE_RE = re.compile(
    r"v(0|[1-9]\d*)(?:\.(0|[1-9]\d*)(?:\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?)?)?",
    re.ASCII,
)


@dataclass
class ReleaseInfo:
    """The fields of a release that matter for update notifications."""

    tag_name: str = ""
    prerelease: bool = False
    draft: bool = False
    url: str = ""


def is_release_version(version: str) -> bool:
    """Return True if version is a semantic version of a released build."""
    return version != "unknown" and _VERSION_TAG_RE.match(version) is not None


def _parse(version: str) -> tuple[tuple[int, int, int], list[str] | None] | None:
    if not version.startswith("v"):
        version = "v" + version
    match = _COMPARE_RE.fullmatch(version)
    if match is None:
        return None
    major, minor, patch, pre = match.groups()
    prerelease = None
    if pre is not None:
        prerelease = pre.split(".")
        if any(len(p) > 1 and p.isdigit() and p[0] == "0" for p in prerelease):
            return None
    return (int(major), int(minor or 0), int(patch or 0)), prerelease


def _compare_prerelease(a: list[str], b: list[str]) -> int:
    for x, y in zip(a, b):
        if x == y:
            continue
        x_num, y_num = x.isdigit(), y.isdigit()
        if x_num and y_num:
            return -1 if int(x) < int(y) else 1
        if x_num:
            return -1
        if y_num:
            return 1
        return -1 if x < y else 1
    return (len(a) > len(b)) - (len(a) < len(b))


def compare_versions(a: str, b: str) -> int:
    """Compare two semantic versions, returning -1, 0 or 1.

    A leading 'v' is optional. Invalid versions sort before valid ones and
    equal to each other; build metadata is ignored.
    """
    pa, pb = _parse(a), _parse(b)
    if pa is None or pb is None:
        return (pa is not None) - (pb is not None)
    if pa[0] != pb[0]:
        return -1 if pa[0] < pb[0] else 1
    pre_a, pre_b = pa[1], pb[1]
    if pre_a is None and pre_b is None:
        return 0
    if pre_a is None:
        return 1
    if pre_b is None:
        return -1
    return _compare_prerelease(pre_a, pre_b)


def _flag_file(config_home: str) -> str:
    return os.path.join(config_home, UPDATE_NOTIFICATIONS_CONFIG_FILENAME)


def set_show_notifications(config_home: str, should_show: bool) -> None:
    """Enable or disable update notifications via a flag file in config_home."""
    flag_file = _flag_file(config_home)
    if should_show:
        try:
            os.remove(flag_file)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise OSError(f"error enabling update notifications: {exc}") from exc
    else:
        try:
            with open(flag_file, "w"):
                pass
        except OSError as exc:
            raise OSError(f"error disabling update notifications: {exc}") from exc


def should_show_notification(config_home: str) -> bool:
    """Return True unless notifications were disabled or their state is unknown."""
    try:
        os.stat(_flag_file(config_home))
    except FileNotFoundError:
        return True
    except OSError as exc:
        output.debug("Error checking if update notifications should be shown: %s", exc)
    return False


def get_latest_release_info() -> ReleaseInfo:
    """Fetch information about the latest release, waiting at most a second."""
    try:
        with urllib.request.urlopen(RELEASE_URL, timeout=1) as response:
            body = response.read()
    except OSError as exc:
        raise OSError(f"failed to check for updates: {exc}") from exc
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise ValueError(f"failed to parse release response body: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("failed to parse release response body: not a JSON object")
    return ReleaseInfo(
        tag_name=str(data.get("tag_name") or ""),
        prerelease=bool(data.get("prerelease")),
        draft=bool(data.get("draft")),
        url=str(data.get("html_url") or ""),
    )


def check_for_update(config_home: str, version: str) -> None:
    """Print a note if a release newer than version is available."""
    # Builds that are not releases should not nag the user
    if not is_release_version(version):
        return
    if not should_show_notification(config_home):
        return
    try:
        info = get_latest_release_info()
    except (OSError, ValueError) as exc:
        output.debug("Error checking for CLI updates: %s", exc)
        return
    if info.prerelease or info.draft:
        return

    current = "v" + version.removeprefix("v")
    latest = "v" + info.tag_name.removeprefix("v")
    if compare_versions(current, latest) < 0:
        output.info(
            "Note: A new version of Kit is available! You are using Kit %s. "
            "The latest version is %s.",
            current,
            latest,
        )
        output.info("      To see a list of changes, visit %s", info.url)
        output.info(
            "      To disable this notification, use "
            "'kit version --show-update-notifications=false'"
        )
        output.info("")