"""Validation, merging and resolution of Kitfiles.

A Kitfile is handled as a mapping with the keys of its JSON form
('manifestVersion', 'package', 'model', 'code', 'datasets', 'docs');
objects with the same attribute names are accepted as input too.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from typing import Any, Callable

from modelkit.constants import MAX_MODEL_REF_CHAIN
from modelkit.reference import is_model_kit_reference

PART_TYPE_MAX_LEN = 64

_PART_TYPE_RE = re.compile(r"[\w][\w.-]*", re.ASCII)


class KitfileValidationError(ValueError):
    """A Kitfile has one or more problems; each is a line of the message."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("errors while validating Kitfile: \n" + "\n".join(self.errors))


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def validate_kitfile(kitfile: Any) -> None:
    """Raise KitfileValidationError if the Kitfile is not valid.

    Detected problems are duplicate layer paths, absolute paths and invalid
    model part types; the message lists them sorted, one per line.
    """
    errs: list[str] = []

    def add_err(message: str) -> None:
        errs.append(f"  * {message}")

    # Which components use each path; used to detect duplicates
    paths: dict[str, list[str]] = {}

    def add_path(path: str, source: str) -> None:
        paths.setdefault(path or ".", []).append(source)

    model = _get(kitfile, "model")
    if model is not None:
        add_path(_get(model, "path", ""), f"model {_get(model, 'name', '')}")
        for part in _get(model, "parts", []):
            part_name = _get(part, "name", "")
            add_path(_get(part, "path", ""), f"modelpart {part_name}")
            part_type = _get(part, "type", "")
            if part_type:
                if _PART_TYPE_RE.fullmatch(part_type) is None:
                    add_err(
                        f"modelpart {part_name} has invalid type (must be alphanumeric "
                        "with dots, dashes, and underscores)"
                    )
                if len(part_type.encode("utf-8")) > PART_TYPE_MAX_LEN:
                    add_err(
                        f"modelpart {part_name} type is too long (must be fewer than "
                        f"{PART_TYPE_MAX_LEN} characters)"
                    )
    for dataset in _get(kitfile, "datasets", []):
        add_path(_get(dataset, "path", ""), f"dataset {_get(dataset, 'name', '')}")
    for idx, code in enumerate(_get(kitfile, "code", [])):
        add_path(_get(code, "path", ""), f"code layer {idx}")
    for idx, docs in enumerate(_get(kitfile, "docs", [])):
        add_path(_get(docs, "path", ""), f"docs layer {idx}")

    for layer_path, layer_ids in paths.items():
        if len(layer_ids) > 1:
            add_err(
                f"{', '.join(layer_ids[:-1])} and {layer_ids[-1]} use the same path {layer_path}"
            )
        if layer_path.startswith("/") or os.path.isabs(layer_path):
            add_err(
                "absolute paths are not supported in a Kitfile "
                f"(path {layer_path} in {layer_ids[0]})"
            )
    if errs:
        errs.sort()
        raise KitfileValidationError(errs)


def _first_non_empty(*values: str) -> str:
    return next((value for value in values if value), "")


def merge_kitfiles(into: Any, source: Any) -> dict[str, Any]:
    """Merge two Kitfiles into a new one.

    Scalar fields keep the first non-empty value (into before source), lists
    are concatenated, and the model path is always taken from source.
    """
    into_pkg = _get(into, "package")
    from_pkg = _get(source, "package")
    result: dict[str, Any] = {
        "manifestVersion": _first_non_empty(
            _get(into, "manifestVersion", ""), _get(source, "manifestVersion", "")
        ),
        "package": {
            field: _first_non_empty(_get(into_pkg, field, ""), _get(from_pkg, field, ""))
            for field in ("name", "description", "license", "version")
        },
    }
    result["package"]["authors"] = list(_get(into_pkg, "authors", [])) + list(
        _get(from_pkg, "authors", [])
    )

    into_model = _get(into, "model")
    from_model = _get(source, "model")
    if into_model is not None or from_model is not None:
        model: dict[str, Any] = {"path": _get(from_model, "path", "")}
        for field in ("name", "description", "framework", "version"):
            model[field] = _first_non_empty(
                _get(into_model, field, ""), _get(from_model, field, "")
            )
        model["parts"] = list(_get(into_model, "parts", [])) + list(
            _get(from_model, "parts", [])
        )
        result["model"] = model

    for key in ("code", "datasets", "docs"):
        result[key] = list(_get(into, key, [])) + list(_get(source, key, []))
    return result


def resolve_kitfile(fetch: Callable[[str], Any], kitfile_ref: str, base_ref: str) -> dict[str, Any]:
    """Return the Kitfile for kitfile_ref with referenced modelkits merged in.

    fetch maps a reference string to its Kitfile. While the model path is a
    reference to another modelkit, that modelkit's Kitfile is fetched and
    merged, up to MAX_MODEL_REF_CHAIN levels. Cycles raise ValueError.
    """
    resolved: dict[str, Any] = {}
    ref_chain = [base_ref, kitfile_ref]
    for _ in range(MAX_MODEL_REF_CHAIN):
        resolved = merge_kitfiles(resolved, fetch(kitfile_ref))
        model = resolved.get("model")
        model_path = _get(model, "path", "")
        if model is None or not is_model_kit_reference(model_path):
            validate_kitfile(resolved)
            return resolved
        if model_path in ref_chain:
            idx = ref_chain.index(model_path)
            cycle = f"[{'=>'.join(ref_chain[idx:])}=>{model_path}]"
            raise ValueError(f"Found cycle in modelkit references: {cycle}")
        ref_chain.append(model_path)
        kitfile_ref = model_path
    raise ValueError(
        f"reached maximum number of model references: [{'=>'.join(ref_chain)}]"
    )