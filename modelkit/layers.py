"""Packing of layer files and directories into reproducible tar archives."""

from __future__ import annotations

import gzip
import hashlib
import os
import stat
import tarfile
import tempfile
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable

from modelkit import output
from modelkit.constants import (
    GZIP_COMPRESSION,
    GZIP_FASTEST_COMPRESSION,
    MediaType,
    validate_compression,
)
from modelkit.ignore import IgnorePaths
from modelkit.output import ProgressLogger
from modelkit.progress import ProgressTar, tar_progress

_GZIP_LEVELS = {GZIP_COMPRESSION: 6, GZIP_FASTEST_COMPRESSION: 1}


@dataclass(frozen=True)
class Descriptor:
    """Describes a stored blob: its media type, digest and size in bytes."""

    media_type: str
    digest: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {"mediaType": self.media_type, "digest": self.digest, "size": self.size}


class _HashingWriter:
    """Writes to a stream while computing the SHA-256 of everything written."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._hash = hashlib.sha256()
        self._count = 0

    def write(self, data: Any) -> int:
        self._stream.write(data)
        self._hash.update(data)
        size = memoryview(data).nbytes
        self._count += size
        return size

    def tell(self) -> int:
        return self._count

    def flush(self) -> None:
        self._stream.flush()

    @property
    def digest(self) -> str:
        return "sha256:" + self._hash.hexdigest()


def sanitize_tar_info(info: tarfile.TarInfo) -> tarfile.TarInfo:
    """Clear the fields of a tar header that would make archives differ between runs.

    Names are stored with forward slashes. The header is changed in place and
    returned.
    """
    info.name = info.name.replace(os.sep, "/")
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    for key in ("atime", "ctime", "mtime"):
        info.pax_headers.pop(key, None)
    return info


def _tar_info(name: str, st: os.stat_result) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    info.uid = getattr(st, "st_uid", 0)
    info.gid = getattr(st, "st_gid", 0)
    if stat.S_ISDIR(st.st_mode):
        info.type = tarfile.DIRTYPE
        info.size = 0
    else:
        info.type = tarfile.REGTYPE
        info.size = st.st_size
    return info


def _add_entry(
    name: str, path: str, st: os.stat_result, ptw: ProgressTar, plog: ProgressLogger
) -> None:
    info = sanitize_tar_info(_tar_info(name, st))
    if info.isdir():
        try:
            ptw.addfile(info)
        except OSError as exc:
            raise OSError(f"failed to write header: {exc}") from exc
        plog.debug("Wrote header %s to tar file", info.name)
        return
    try:
        handle = open(path, "rb")
    except OSError as exc:
        raise OSError(f"failed to open file for archiving: {exc}") from exc
    with handle:
        try:
            ptw.addfile(info, handle)
        except OSError as exc:
            raise OSError(f"failed to add file to archive: {exc}") from exc
    plog.debug("Wrote header %s to tar file", info.name)
    plog.debug("Wrote file %s to tar file", path)


def _join(parent: str, name: str) -> str:
    if parent == ".":
        return name
    return os.path.join(parent, name)


def _walk(root: str, visit: Callable[[str, os.stat_result], bool]) -> None:
    """Visit root and everything below it in lexical order.

    Entries are examined without following symlinks. visit returns False to
    keep a directory from being entered.
    """

    def walk_entry(path: str, st: os.stat_result) -> None:
        if not visit(path, st):
            return
        if stat.S_ISDIR(st.st_mode):
            for name in sorted(os.listdir(path)):
                child = _join(path, name)
                walk_entry(child, os.lstat(child))

    walk_entry(root, os.lstat(root))


def _write_dir_to_tar(
    base_path: str, ignore: IgnorePaths, ptw: ProgressTar, plog: ProgressLogger
) -> None:
    # Names in the archive are relative to the parent of base_path, so that
    # the directory itself is the top-level entry
    trim_path = os.path.dirname(base_path)
    if trim_path in ("", "."):
        trim_path = ""

    def visit(file: str, st: os.stat_result) -> bool:
        if file == ".":
            return True
        mode = st.st_mode
        if not stat.S_ISREG(mode) and not stat.S_ISDIR(mode):
            return False
        try:
            ignored = ignore.matches(file, base_path)
        except ValueError as exc:
            raise ValueError(f"failed to match {file} against ignore file: {exc}") from exc
        if ignored:
            if not ignore.has_exclusions() and stat.S_ISDIR(mode):
                plog.debug("Skipping directory %s: ignored", file)
                return False
            plog.debug("Skipping file %s: ignored", file)
            return True
        try:
            rel_path = os.path.relpath(file, trim_path or ".")
        except ValueError as exc:
            raise ValueError(f"failed to find relative path for {file}") from exc
        _add_entry(rel_path, file, st, ptw, plog)
        return True

    _walk(base_path, visit)


def total_size(base_path: str, ignore: IgnorePaths) -> int:
    """Return the number of bytes of regular files a layer at base_path would pack."""
    st = os.stat(base_path)
    if stat.S_ISREG(st.st_mode):
        return st.st_size
    if not stat.S_ISDIR(st.st_mode):
        raise ValueError(f"path {base_path} is neither a file nor a directory")

    total = 0

    def visit(file: str, entry: os.stat_result) -> bool:
        nonlocal total
        try:
            ignored = ignore.matches(file, base_path)
        except ValueError as exc:
            raise ValueError(f"failed to match {file} against ignore file: {exc}") from exc
        if ignored:
            if not ignore.has_exclusions() and stat.S_ISDIR(entry.st_mode):
                return False
            return True
        if stat.S_ISREG(entry.st_mode):
            total += entry.st_size
        return True

    _walk(base_path, visit)
    return total


def _call_and_print_error(func: Callable[[], Any], message: str) -> None:
    try:
        func()
    except Exception as exc:  # reported and discarded
        output.error(message, exc)


def _remove_temp_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        output.error("Failed to clean up temporary file %s: %s", path, exc)


def compress_layer(
    path: str, media_type: MediaType, ignore: IgnorePaths
) -> tuple[str, Descriptor]:
    """Pack a file or directory into a tar archive in a temporary file.

    The archive is compressed as media_type asks. Returns the temporary file's
    path, which the caller must move or remove, and a descriptor of it.
    """
    path = os.path.normpath(path)

    if ignore.matches(path, path):
        output.error("Warning: layer path %s ignored by kitignore", path)

    try:
        path_stat = os.stat(path)
    except FileNotFoundError as exc:
        raise FileNotFoundError(
            f"{media_type.base_type} path {path} does not exist"
        ) from exc
    is_file = stat.S_ISREG(path_stat.st_mode)
    if not is_file and not stat.S_ISDIR(path_stat.st_mode):
        raise ValueError(f"path {path} is neither a file nor a directory")
    validate_compression(media_type.compression)

    total = 0
    if output.progress_enabled():
        try:
            total = total_size(path, ignore)
        except OSError as exc:
            raise OSError(f"failed to get size of layer: {exc}") from exc

    fd, temp_name = tempfile.mkstemp(prefix="kitops_layer_")
    output.debug("Compressing layer to temporary file %s", temp_name)
    temp_file = os.fdopen(fd, "wb")
    hasher = _HashingWriter(temp_file)

    gz: gzip.GzipFile | None = None
    tar: tarfile.TarFile | None = None
    ptw: ProgressTar | None = None
    try:
        level = _GZIP_LEVELS.get(media_type.compression)
        if level is not None:
            gz = gzip.GzipFile(
                filename="", mode="wb", compresslevel=level, fileobj=hasher, mtime=0
            )
        target: Any = gz if gz is not None else hasher
        tar = tarfile.open(fileobj=target, mode="w", format=tarfile.PAX_FORMAT)
        ptw, plog = tar_progress(total, tar)
        if is_file:
            _add_entry(os.path.basename(path), path, path_stat, ptw, plog)
        else:
            _write_dir_to_tar(path, ignore, ptw, plog)
    except BaseException:
        for closer in (ptw, tar, gz, temp_file):
            if closer is not None:
                try:
                    closer.close()
                except Exception:  # the file is deleted anyway
                    pass
        _remove_temp_file(temp_name)
        raise

    plog.wait()
    _call_and_print_error(ptw.close, "Failed to close writer: %s")
    _call_and_print_error(tar.close, "Failed to close tar writer: %s")
    if gz is not None:
        _call_and_print_error(gz.close, "Failed to close compression writer: %s")

    try:
        temp_file.flush()
        size = os.fstat(temp_file.fileno()).st_size
    except OSError as exc:
        try:
            temp_file.close()
        except OSError:
            pass
        _remove_temp_file(temp_name)
        raise OSError(f"failed to stat temporary file: {exc}") from exc
    _call_and_print_error(temp_file.close, "Failed to close temporary file: %s")

    return temp_name, Descriptor(media_type=str(media_type), digest=hasher.digest, size=size)