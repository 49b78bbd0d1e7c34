"""Matching of paths against .kitignore patterns and overlapping layers."""

from __future__ import annotations

import os
import re
from typing import Any, Iterable

from modelkit.constants import IGNORE_FILE_NAME, default_kitfile_names
from modelkit.reference import layer_paths_from_kitfile

_EXACT, _PREFIX, _SUFFIX, _REGEXP = range(4)
_UTF8_BOM = "\ufeff"


def _clean_path(path: str) -> str:
    cleaned = os.path.normpath(path)
    if os.sep == "/" and cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _dir(path: str) -> str:
    return _clean_path(os.path.dirname(path))


def _class_char(pattern: str, i: int) -> tuple[str, int]:
    if i >= len(pattern) or pattern[i] in "-]":
        raise ValueError("syntax error in pattern")
    if pattern[i] == "\\" and os.sep != "\\":
        i += 1
        if i >= len(pattern):
            raise ValueError("syntax error in pattern")
    return pattern[i], i + 1


def _check_syntax(pattern: str) -> None:
    """Raise ValueError if pattern is not a well-formed glob."""
    n = len(pattern)
    i = 0
    while i < n:
        ch = pattern[i]
        if ch == "\\" and os.sep != "\\":
            if i + 1 >= n:
                raise ValueError("syntax error in pattern")
            i += 2
        elif ch == "[":
            i += 1
            if i < n and pattern[i] == "^":
                i += 1
            ranges = 0
            while True:
                if i < n and pattern[i] == "]" and ranges > 0:
                    i += 1
                    break
                _, i = _class_char(pattern, i)
                if i >= n:
                    raise ValueError("syntax error in pattern")
                if pattern[i] == "-":
                    _, i = _class_char(pattern, i + 1)
                    if i >= n:
                        raise ValueError("syntax error in pattern")
                ranges += 1
        else:
            i += 1


class _Pattern:
    def __init__(self, cleaned: str, exclusion: bool) -> None:
        self.cleaned = cleaned
        self.exclusion = exclusion
        self._kind: int | None = None
        self._regex: re.Pattern[str] | None = None

    def _compile(self) -> None:
        sep = os.sep
        esc = re.escape(sep)
        pattern = self.cleaned
        n = len(pattern)
        parts: list[str] = []
        kind = _EXACT
        pos = 0
        count = 0
        while pos < n:
            ch = pattern[pos]
            pos += 1
            if ch == "*":
                if pos < n and pattern[pos] == "*":
                    pos += 1
                    # Treat "**/" as "**"
                    if pos < n and pattern[pos] == sep:
                        pos += 1
                    if pos >= n:
                        if kind == _EXACT:
                            kind = _PREFIX
                        else:
                            parts.append(".*")
                            kind = _REGEXP
                    else:
                        parts.append(f"(.*{esc})?")
                        kind = _REGEXP
                    if count == 0:
                        kind = _SUFFIX
                else:
                    parts.append(f"[^{esc}]*")
                    kind = _REGEXP
            elif ch == "?":
                parts.append(f"[^{esc}]")
                kind = _REGEXP
            elif ch in ".+()|{}$":
                parts.append("\\" + ch)
            elif ch == "\\":
                if sep == "\\":
                    parts.append(esc)
                    count += 1
                    continue
                if pos < n:
                    parts.append("\\" + pattern[pos])
                    pos += 1
                    kind = _REGEXP
                else:
                    parts.append("\\\\")
            elif ch in "[]":
                parts.append(ch)
                kind = _REGEXP
            else:
                parts.append(ch)
            count += 1

        if kind == _REGEXP:
            try:
                self._regex = re.compile("".join(parts))
            except re.error as exc:
                raise ValueError("syntax error in pattern") from exc
        self._kind = kind

    def match(self, path: str) -> bool:
        if self._kind is None:
            self._compile()
        if self._kind == _EXACT:
            return path == self.cleaned
        if self._kind == _PREFIX:
            return path.startswith(self.cleaned[:-2])
        if self._kind == _SUFFIX:
            suffix = self.cleaned[2:]
            if path.endswith(suffix):
                return True
            # "**/foo" also matches "foo"
            return suffix[:1] == os.sep and path == suffix[1:]
        assert self._regex is not None
        return self._regex.fullmatch(path) is not None


class PatternMatcher:
    """Matches paths against ignore-file patterns; '!' patterns re-include."""

    def __init__(self, patterns: Iterable[str]) -> None:
        self._patterns: list[_Pattern] = []
        self._exclusions = False
        for raw in patterns:
            pattern = raw.strip()
            if not pattern:
                continue
            pattern = _clean_path(pattern)
            exclusion = False
            if pattern.startswith("!"):
                if len(pattern) == 1:
                    raise ValueError('illegal exclusion pattern: "!"')
                exclusion = True
                pattern = pattern[1:]
                self._exclusions = True
            _check_syntax(pattern)
            self._patterns.append(_Pattern(pattern, exclusion))

    def matches_or_parent_matches(self, path: str) -> bool:
        """Return True if path, or one of its parent directories, is ignored."""
        matched = False
        path = path.replace("/", os.sep)
        parent = _dir(path)
        parent_dirs = parent.split(os.sep)
        parents = [os.sep.join(parent_dirs[: i + 1]) for i in range(len(parent_dirs))]

        for pattern in self._patterns:
            # An inclusion cannot change an existing match, nor an exclusion a non-match
            if pattern.exclusion != matched:
                continue
            match = pattern.match(path)
            if not match and parent != ".":
                match = any(pattern.match(p) for p in parents)
            if match:
                matched = not pattern.exclusion
        return matched

    def exclusions(self) -> bool:
        """Return True if any pattern is an exclusion ('!...')."""
        return self._exclusions


class IgnorePaths:
    """Decides which paths are left out of a layer being packed."""

    def __init__(self, matcher: PatternMatcher, layers: list[str]) -> None:
        self.matcher = matcher
        self.layers = list(layers)

    def matches(self, path: str, layer_path: str) -> bool:
        """Return True if path should be skipped while packing layer_path.

        A path is skipped if the ignore file excludes it or if it belongs to
        another layer nested inside the current one.
        """
        path = _clean_path(path.strip())
        layer_path = _clean_path(layer_path.strip())
        if self.matcher.matches_or_parent_matches(path):
            return True
        for layer in self.layers:
            if layer_path.startswith(layer):
                # Layers that contain the current layer do not exclude its files
                continue
            if path.startswith(layer):
                return True
        return False

    def has_exclusions(self) -> bool:
        return self.matcher.exclusions()


def _parse_ignore_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    patterns = []
    for number, line in enumerate(lines):
        if line.endswith("\r"):
            line = line[:-1]
        if number == 0:
            line = line.removeprefix(_UTF8_BOM)
        if line.startswith("#"):
            continue
        pattern = line.strip()
        if not pattern:
            continue
        invert = pattern.startswith("!")
        if invert:
            pattern = pattern[1:].strip()
        if pattern:
            pattern = _clean_path(pattern).replace(os.sep, "/")
            if len(pattern) > 1 and pattern.startswith("/"):
                pattern = pattern[1:]
        if invert:
            pattern = "!" + pattern
        patterns.append(pattern)
    return patterns


def read_ignore_file(context_dir: str) -> list[str]:
    """Read the patterns of the ignore file in context_dir; none if it is absent."""
    ignore_path = os.path.join(context_dir, IGNORE_FILE_NAME)
    try:
        with open(ignore_path, "rb") as handle:
            data = handle.read()
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise OSError(f"failed to open {IGNORE_FILE_NAME} file: {exc}") from exc
    return _parse_ignore_lines(data.decode("utf-8", errors="surrogateescape"))


def new_ignore(kit_ignore_paths: Iterable[str] | None, kitfile: Any, *args: str) -> IgnorePaths:
    """Build an IgnorePaths from ignore patterns and the layers of a Kitfile.

    Kitfile names and the ignore file itself are always ignored; args are
    extra layer paths.
    """
    patterns = list(kit_ignore_paths or [])
    patterns += default_kitfile_names()
    patterns.append(IGNORE_FILE_NAME)
    try:
        matcher = PatternMatcher(patterns)
    except ValueError as exc:
        raise ValueError(f"invalid {IGNORE_FILE_NAME} file: {exc}") from exc
    layers = layer_paths_from_kitfile(kitfile) + list(args)
    return IgnorePaths(matcher, layers)


def new_ignore_from_context(context_dir: str, kitfile: Any, *args: str) -> IgnorePaths:
    """Build an IgnorePaths from the ignore file in context_dir."""
    return new_ignore(read_ignore_file(context_dir), kitfile, *args)