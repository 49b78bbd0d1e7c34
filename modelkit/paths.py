"""Checks on paths inside a context directory and Kitfile lookup."""

from __future__ import annotations

import os
import sys

from modelkit.constants import default_kitfile_names


class PathError(Exception):
    """A path is invalid or escapes its context directory."""


def _is_local(path: str) -> bool:
    """Return True if path is relative and stays inside the directory it is joined to."""
    if not path or os.path.isabs(path):
        return False
    if sys.platform == "win32":
        drive, _ = os.path.splitdrive(path)
        if drive or path.startswith(("\\", "/")):
            return False
    cleaned = os.path.normpath(path)
    return cleaned != os.pardir and not cleaned.startswith(os.pardir + os.sep)


def path_exists(path: str) -> bool:
    """Return False only if nothing exists at path.

    Errors other than a missing file count as existing, so that callers go on
    to report them.
    """
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError:
        return True
    return True


def _resolve(path: str) -> str:
    try:
        return os.path.realpath(path, strict=True)
    except OSError as exc:
        raise PathError(f"error resolving {path}: {exc}") from exc


def verify_subpath(context: str, sub_dir: str) -> tuple[str, str]:
    """Check that sub_dir, joined to context, stays within context.

    Symlinks are followed where the paths exist. Returns the absolute path and
    the path relative to the resolved context.
    """
    if os.path.isabs(sub_dir):
        raise PathError(f"absolute paths are not supported ({sub_dir})")
    if not _is_local(sub_dir):
        raise PathError("layer paths must stay within context directory")

    abs_context = os.path.abspath(context)
    if path_exists(abs_context):
        abs_context = _resolve(abs_context)

    full_path = os.path.normpath(os.path.join(abs_context, sub_dir))
    if path_exists(full_path):
        full_path = _resolve(full_path)

    try:
        rel_path = os.path.relpath(full_path, abs_context)
    except ValueError as exc:
        raise PathError(f"failed to get relative path: {exc}") from exc
    if ".." in rel_path:
        raise PathError("paths must be within context directory")
    return full_path, rel_path


def find_kitfile_in_path(context_dir: str) -> str:
    """Return the absolute path of the first accepted Kitfile name in context_dir."""
    for file_name in default_kitfile_names():
        candidate = os.path.join(context_dir, file_name)
        if path_exists(candidate):
            return os.path.abspath(candidate)
    raise PathError(
        f"No Kitfile found in {context_dir}. Consider using the -f flag to specify its path"
    )