"""Download and verification of the local model server and its web UI."""

from __future__ import annotations

import hashlib
import os
import shutil
import sys
import tempfile
import urllib.error
import urllib.request

from modelkit import output
from modelkit.archive import ArchiveError, extract_file

LLAMAFILE_VERSION = "0.8.16"

_DOWNLOAD_BASE = "https://jozu.ml/downloads/"
LLAMAFILE_DOWNLOAD_URL = f"{_DOWNLOAD_BASE}?file=llamafile.tar.gz&version={LLAMAFILE_VERSION}"
UI_DOWNLOAD_URL = f"{_DOWNLOAD_BASE}?file=ui.tar.gz&version={LLAMAFILE_VERSION}"
CHECKSUM_URL = f"{_DOWNLOAD_BASE}?file=checksums.txt&version={LLAMAFILE_VERSION}"

_SERVER_ARCHIVE = "llamafile.tar.gz"
_UI_ARCHIVE = "ui.tar.gz"
_CHECKSUM_FILE = "checksums.txt"


class DownloadError(Exception):
    """A file cannot be downloaded, parsed or verified."""


def download_file(url: str, folder: str, filename: str) -> None:
    """Download url into folder/filename, creating folder if needed."""
    try:
        os.makedirs(folder, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise DownloadError(f"failed to create folder {folder}: {exc}") from exc

    file_path = os.path.join(folder, filename)
    try:
        out = open(file_path, "wb")
    except OSError as exc:
        raise DownloadError(f"failed to create file {folder}: {exc}") from exc

    with out:
        try:
            response = urllib.request.urlopen(url)
        except urllib.error.HTTPError as exc:
            raise DownloadError(
                f"bad status downloading file from {url}: {exc.code} {exc.reason}"
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise DownloadError(f"download from url {url} failed: {exc}") from exc

        with response:
            status = getattr(response, "status", None)
            if status is not None and status != 200:
                reason = getattr(response, "reason", "")
                raise DownloadError(
                    f"bad status downloading file from {url}: {status} {reason}".rstrip()
                )
            try:
                shutil.copyfileobj(response, out)
            except OSError as exc:
                raise DownloadError(f"failed to write to file {file_path}: {exc}") from exc


def parse_checksum_file(path: str) -> dict[str, str]:
    """Read lines of 'checksum path' into a mapping of file base name to checksum."""
    try:
        handle = open(path, encoding="utf-8")
    except OSError as exc:
        raise DownloadError(f"failed to open checksum file: {exc}") from exc

    checksums: dict[str, str] = {}
    with handle:
        try:
            for raw in handle:
                line = raw.rstrip("\r\n")
                if not line.strip():
                    continue
                parts = line.split()
                if len(parts) != 2:
                    raise DownloadError(f"invalid checksum line: {line}")
                checksum, name = parts
                checksums[os.path.basename(name.replace("\\", "/"))] = checksum
        except (OSError, UnicodeDecodeError) as exc:
            raise DownloadError(f"error reading checksum file: {exc}") from exc
    return checksums


def verify_checksum(folder: str, filename: str, checksums: dict[str, str]) -> None:
    """Check that the SHA-256 of folder/filename is the one listed in checksums."""
    expected = checksums.get(filename)
    if expected is None:
        raise DownloadError(f"checksum not found for file: {filename}")

    file_path = os.path.join(folder, filename)
    digest = hashlib.sha256()
    try:
        with open(file_path, "rb") as handle:
            while chunk := handle.read(1 << 20):
                digest.update(chunk)
    except OSError as exc:
        raise DownloadError(f"failed to read file {file_path}: {exc}") from exc

    computed = digest.hexdigest()
    if computed != expected:
        raise DownloadError(
            f"checksum mismatch for {filename}: expected {expected}, got {computed}"
        )
    output.info("Checksum verified for %s", filename)


def download_and_parse_checksums(tmp_folder: str) -> dict[str, str]:
    """Download the published checksum list into tmp_folder and parse it."""
    try:
        download_file(CHECKSUM_URL, tmp_folder, _CHECKSUM_FILE)
    except DownloadError as exc:
        raise DownloadError(f"failed to download checksums.txt: {exc}") from exc
    try:
        return parse_checksum_file(os.path.join(tmp_folder, _CHECKSUM_FILE))
    except DownloadError as exc:
        raise DownloadError(f"failed to parse checksums.txt: {exc}") from exc


def _fetch_verified(url: str, tmp_folder: str, archive: str) -> None:
    try:
        download_file(url, tmp_folder, archive)
    except DownloadError as exc:
        raise DownloadError(f"failed to extract {archive}: {exc}") from exc
    try:
        checksums = download_and_parse_checksums(tmp_folder)
    except DownloadError as exc:
        raise DownloadError(f"failed to download and parse checksums: {exc}") from exc
    try:
        verify_checksum(tmp_folder, archive, checksums)
    except DownloadError as exc:
        raise DownloadError(f"checksum verification failed for {archive}: {exc}") from exc


def extract_server(harness_home: str) -> None:
    """Download, verify and unpack the server executable into harness_home."""
    try:
        os.makedirs(harness_home, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise DownloadError(f"error creating directory {harness_home}: {exc}") from exc

    with tempfile.TemporaryDirectory(prefix="kitops_tmp") as tmp_folder:
        output.info("downloading harness binaries")
        _fetch_verified(LLAMAFILE_DOWNLOAD_URL, tmp_folder, _SERVER_ARCHIVE)
        try:
            extract_file(tmp_folder, _SERVER_ARCHIVE, harness_home)
        except ArchiveError as exc:
            raise DownloadError(f"failed to unpack llamafile: {exc}") from exc

    llamafile_path = os.path.join(harness_home, "llamafile")
    if sys.platform == "win32":
        try:
            os.replace(llamafile_path, os.path.join(harness_home, "llamafile.exe"))
        except OSError as exc:
            raise DownloadError(f"error renaming file to executable: {exc}") from exc
    else:
        try:
            os.chmod(llamafile_path, 0o755)
        except OSError as exc:
            raise DownloadError(f"error setting executable permission: {exc}") from exc


def extract_ui(harness_home: str) -> None:
    """Download, verify and unpack the web UI into harness_home/ui."""
    with tempfile.TemporaryDirectory(prefix="kitops_tmp") as tmp_folder:
        output.info("Updating harness UI components")
        _fetch_verified(UI_DOWNLOAD_URL, tmp_folder, _UI_ARCHIVE)

        ui_home = os.path.join(harness_home, "ui")
        try:
            os.makedirs(ui_home, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"failed to create directory {ui_home}: {exc}") from exc
        try:
            extract_file(tmp_folder, _UI_ARCHIVE, ui_home)
        except ArchiveError as exc:
            raise DownloadError(f"failed to unpack UI: {exc}") from exc