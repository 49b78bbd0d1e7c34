"""Unpacking of downloaded or bundled payload archives."""

from __future__ import annotations

import contextlib
import gzip
import os
import shutil
import stat
import tarfile

from modelkit.paths import path_exists

_CHUNK = 1 << 20
_BINARY = getattr(os, "O_BINARY", 0)


class ArchiveError(Exception):
    """A payload or archive cannot be read or unpacked."""


def _check_gzip(stream: gzip.GzipFile, message: str) -> None:
    try:
        stream.peek(1)
    except (OSError, EOFError) as exc:
        raise ArchiveError(f"{message}: {exc}") from exc


def extract_file(source_dir: str, file: str, dest_dir: str) -> None:
    """Unpack file from source_dir into dest_dir.

    A .tar.gz archive is extracted, a .gz file is decompressed without its
    suffix, and anything else is copied as it is.
    """
    src_path = os.path.join(source_dir, file)
    try:
        src = open(src_path, "rb")
    except OSError as exc:
        raise ArchiveError(f"failed to open file {file}: {exc}") from exc

    with contextlib.ExitStack() as stack:
        stack.enter_context(src)

        if file.endswith(".tar.gz"):
            gz = stack.enter_context(gzip.GzipFile(fileobj=src, mode="rb"))
            _check_gzip(gz, f"failed to create gzip reader for {file}")
            try:
                tar = tarfile.open(fileobj=gz, mode="r|")
            except (tarfile.TarError, OSError, EOFError) as exc:
                raise ArchiveError(f"failed to read tar header: {exc}") from exc
            with tar:
                extract_tar(tar, dest_dir)
            return

        reader = src
        dest_name = file
        if file.endswith(".gz"):
            reader = stack.enter_context(gzip.GzipFile(fileobj=src, mode="rb"))
            _check_gzip(reader, f"failed to decompress payload {file}")
            dest_name = file[: -len(".gz")]

        dest_path = os.path.join(dest_dir, os.path.basename(dest_name))
        try:
            # Keep executable permissions
            fd = os.open(dest_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _BINARY, 0o755)
        except OSError as exc:
            raise ArchiveError(
                f"failed to create destination file {dest_path}: {exc}"
            ) from exc
        with os.fdopen(fd, "wb") as dest:
            try:
                shutil.copyfileobj(reader, dest)
            except (OSError, EOFError) as exc:
                raise ArchiveError(f"failed to copy payload to {dest_path}: {exc}") from exc


def _extract_regular(tar: tarfile.TarFile, member: tarfile.TarInfo, out_path: str) -> None:
    if path_exists(out_path) and not os.path.isfile(out_path):
        raise ArchiveError(f"path '{out_path}' already exists and is not a regular file")
    try:
        fd = os.open(
            out_path, os.O_CREAT | os.O_TRUNC | os.O_RDWR | _BINARY, stat.S_IMODE(member.mode)
        )
    except OSError as exc:
        raise ArchiveError(f"failed to create file {out_path}: {exc}") from exc

    written = 0
    with os.fdopen(fd, "wb") as out:
        try:
            source = tar.extractfile(member)
            if source is not None:
                with source:
                    while chunk := source.read(_CHUNK):
                        out.write(chunk)
                        written += len(chunk)
        except (OSError, tarfile.TarError, EOFError) as exc:
            raise ArchiveError(f"failed to write file {out_path}: {exc}") from exc
    if written != member.size:
        raise ArchiveError(f"could not unpack file {out_path}")


def extract_tar(tar: tarfile.TarFile, dest_dir: str) -> None:
    """Extract the directories and regular files of tar into dest_dir.

    Entries whose names leave dest_dir, and entries of any other type, stop
    the extraction with an ArchiveError.
    """
    members = iter(tar)
    while True:
        try:
            member = next(members)
        except StopIteration:
            return
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise ArchiveError(f"failed to read tar header: {exc}") from exc

        # Refuse names that would escape the destination directory
        sanitized = os.path.normpath(member.name)
        if ".." in sanitized or os.path.isabs(sanitized):
            raise ArchiveError(f"invalid file path in archive: {sanitized}")
        out_path = os.path.join(dest_dir, sanitized)

        if member.type == tarfile.DIRTYPE:
            try:
                os.makedirs(out_path, mode=stat.S_IMODE(member.mode), exist_ok=True)
            except OSError as exc:
                raise ArchiveError(f"failed to create directory {out_path}: {exc}") from exc
        elif member.type in (tarfile.REGTYPE, tarfile.AREGTYPE):
            _extract_regular(tar, member, out_path)
        else:
            raise ArchiveError(f"unrecognized type in archive: {member.name}")