"""Parsing and validation of modelkit references such as registry/repo:tag."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_REGISTRY = "localhost"
DEFAULT_REPOSITORY = "_"

_START_END_ALNUM = re.compile(r"[a-z0-9](.*[a-z0-9])?")
_REPOSITORY_RE = re.compile(
    r"[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*)*"
)
_TAG_RE = re.compile(r"\w[\w.-]{0,127}", re.ASCII)
_REGISTRY_RE = re.compile(
    r"(?:\[[0-9A-Fa-f:.%]*\]|[A-Za-z0-9\-._~!$&'()*+,;=%]*)(?::[0-9]*)?"
)
_DIGEST_FORMAT_RE = re.compile(r"[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+")
_HEX_RE = re.compile(r"[a-f0-9]+")
_DIGEST_ALGORITHMS = {"sha256": 64, "sha384": 96, "sha512": 128}


class InvalidReferenceError(ValueError):
    """A reference string cannot be parsed or fails validation."""


class NotAModelKitError(Exception):
    """A reference resolves to something that is not a modelkit."""

    def __init__(self, message: str = "reference exists but is not a modelkit") -> None:
        super().__init__(message)


def _validate_digest(value: str) -> None:
    """Raise ValueError unless value is a well-formed, supported digest."""
    i = value.find(":")
    if i <= 0 or i + 1 == len(value):
        raise ValueError("invalid checksum digest format")
    algorithm, encoded = value[:i], value[i + 1:]
    expected_len = _DIGEST_ALGORITHMS.get(algorithm)
    if expected_len is None:
        if _DIGEST_FORMAT_RE.fullmatch(value) is None:
            raise ValueError("invalid checksum digest format")
        raise ValueError("unsupported digest algorithm")
    if len(encoded) != expected_len:
        raise ValueError("invalid checksum digest length")
    if _HEX_RE.fullmatch(encoded) is None:
        raise ValueError("invalid checksum digest format")


@dataclass
class Reference:
    """A registry, a repository within it, and an optional tag or digest."""

    registry: str = ""
    repository: str = ""
    reference: str = ""

    def host(self) -> str:
        """Return the host to contact for this reference's registry."""
        if self.registry == "docker.io":
            return "registry-1.docker.io"
        return self.registry

    def validate_registry(self) -> None:
        if _REGISTRY_RE.fullmatch(self.registry) is None:
            raise InvalidReferenceError(
                f'invalid reference: invalid registry "{self.registry}"'
            )

    def validate_repository(self) -> None:
        if _REPOSITORY_RE.fullmatch(self.repository) is None:
            raise InvalidReferenceError(
                f'invalid reference: invalid repository "{self.repository}"'
            )

    def validate_reference_as_tag(self) -> None:
        if _TAG_RE.fullmatch(self.reference) is None:
            raise InvalidReferenceError(
                f'invalid reference: invalid tag "{self.reference}"'
            )

    def validate_reference_as_digest(self) -> None:
        try:
            _validate_digest(self.reference)
        except ValueError as exc:
            raise InvalidReferenceError(
                f'invalid reference: invalid digest "{self.reference}": {exc}'
            ) from exc

    def __str__(self) -> str:
        if not self.repository:
            return self.registry
        ref = f"{self.registry}/{self.repository}"
        if not self.reference:
            return ref
        if reference_is_digest(self.reference):
            return f"{ref}@{self.reference}"
        return f"{ref}:{self.reference}"


def parse_reference(ref_string: str) -> tuple[Reference, list[str]]:
    """Parse a reference string, filling in default registry and repository.

    A first segment that does not look like a host (no '.' or ':') is taken as
    part of the repository, so testorg/testrepo becomes
    localhost/testorg/testrepo. A bare digest gets placeholder registry and
    repository. Extra comma-separated tags are returned alongside.
    """
    try:
        _validate_digest(ref_string)
    except ValueError:
        pass
    else:
        return Reference(DEFAULT_REGISTRY, DEFAULT_REPOSITORY, ref_string), []

    has_digest = False
    has_tag = False
    ref = ""

    unprocessed, *extra_tags = ref_string.split(",")

    parts = unprocessed.split("/", 1)
    if len(parts) == 1:
        reg = DEFAULT_REGISTRY
    else:
        reg = parts[0]
        if ":" not in reg and "." not in reg:
            reg = DEFAULT_REGISTRY
        else:
            unprocessed = parts[1]

    if "@" in unprocessed:
        has_digest = True
        repo, ref = unprocessed.split("@", 1)
        repo = repo.split(":", 1)[0]
    elif ":" in unprocessed:
        has_tag = True
        repo, ref = unprocessed.split(":", 1)
    else:
        repo = unprocessed

    if repo.lower() != repo:
        raise InvalidReferenceError(f"repository ({repo}) name must be lowercase")
    if _START_END_ALNUM.search(repo) is None:
        raise InvalidReferenceError(
            f"repository ({repo}) must start and end with a letter or number"
        )

    reference = Reference(reg, repo, ref)
    reference.validate_registry()
    reference.validate_repository()
    if has_tag:
        reference.validate_reference_as_tag()
    elif has_digest:
        reference.validate_reference_as_digest()
    return reference, extra_tags


def reference_is_digest(ref: str) -> bool:
    """Return True if ref is a valid digest; otherwise it is treated as a tag."""
    try:
        _validate_digest(ref)
    except ValueError:
        return False
    return True


def default_reference() -> Reference:
    """Return a reference with the default registry and repository and no tag."""
    return Reference(DEFAULT_REGISTRY, DEFAULT_REPOSITORY)


def format_repository_for_display(repo: str) -> str:
    """Strip defaulted registry and repository parts for showing to the user."""
    repo = repo.removeprefix(DEFAULT_REGISTRY + "/")
    repo = repo.removeprefix(DEFAULT_REPOSITORY)
    return repo.removeprefix("@")


def _clean_path(path: str) -> str:
    cleaned = os.path.normpath(path)
    if os.sep == "/" and cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def repo_path(storage_path: str, ref: Reference) -> str:
    """Return the directory for a local OCI index of ref's registry and repository."""
    return _clean_path(os.path.join(storage_path, ref.registry, ref.repository))


def is_model_kit_reference(ref: str) -> bool:
    """Return True if ref looks like a modelkit reference rather than a path."""
    if ":" not in ref and "@" not in ref:
        return False
    try:
        parse_reference(ref)
    except InvalidReferenceError:
        return False
    return True


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def layer_paths_from_kitfile(kitfile: Any) -> list[str]:
    """Return the path of every layer a Kitfile declares.

    The Kitfile is a mapping (or an object with the same attribute names)
    with optional 'code', 'datasets', 'docs' and 'model' entries.
    """

    def clean(path: Any) -> str:
        return _clean_path((path or "").strip())

    layer_paths = [clean(_field(code, "path")) for code in _field(kitfile, "code") or []]
    layer_paths += [clean(_field(ds, "path")) for ds in _field(kitfile, "datasets") or []]
    # Docs paths are taken as written
    layer_paths += [_field(docs, "path") or "" for docs in _field(kitfile, "docs") or []]

    model = _field(kitfile, "model")
    if model is not None:
        model_path = _field(model, "path") or ""
        if model_path:
            layer_paths.append(clean(model_path))
        layer_paths += [clean(_field(part, "path")) for part in _field(model, "parts") or []]
    return layer_paths