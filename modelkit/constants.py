"""Names, storage paths and media types shared across the package."""

from __future__ import annotations

import base64
import binascii
import os
import platform
import re
import sys
from dataclasses import dataclass

# Default name for a Kitfile (otherwise given explicitly when packing)
DEFAULT_KITFILE_NAME = "Kitfile"
# Name of the ignore file read from a context directory
IGNORE_FILE_NAME = ".kitignore"

# Layout of the configuration directory: modelkits live in <home>/storage/,
# credentials in <home>/credentials.json
DEFAULT_CONFIG_SUBDIR = "kitops"
STORAGE_SUBPATH = "storage"
CREDENTIALS_SUBPATH = "credentials.json"
HARNESS_SUBPATH = "harness"
HARNESS_PROCESS_FILE = "process.pid"
HARNESS_LOG_FILE = "harness.log"
UPDATE_NOTIFICATIONS_CONFIG_FILENAME = "disable-update-notifications"

# Annotation recording the CLI version that produced a modelkit
CLI_VERSION_ANNOTATION = "ml.kitops.modelkit.cli-version"

# Maximum number of parent modelkits reachable through model path references
MAX_MODEL_REF_CHAIN = 10

KITOPS_HOME_ENV_VAR = "KITOPS_HOME"
CLIENT_CERT_ENV_VAR = "KITOPS_CLIENT_CERT"
CLIENT_CERT_KEY_ENV_VAR = "KITOPS_CLIENT_KEY"

# Build information; replaced when a release is built
VERSION = "unknown"
GIT_COMMIT = "unknown"
BUILD_TIME = "unknown"
PYTHON_VERSION = platform.python_version()

CONFIG_TYPE = "config"
MODEL_TYPE = "model"
MODEL_PART_TYPE = "modelpart"
DATASET_TYPE = "dataset"
CODE_TYPE = "code"
DOCS_TYPE = "docs"

NONE_COMPRESSION = "none"
GZIP_COMPRESSION = "gzip"
GZIP_FASTEST_COMPRESSION = "gzip-fastest"

MEDIA_TYPE_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
CONFIG_MEDIA_TYPE = "application/vnd.kitops.modelkit.config.v1+json"

_MEDIA_TYPE_RE = re.compile(
    r"^application/vnd.kitops.modelkit.(\w+).v1.tar(?:\+(\w+))?", re.ASCII
)
_LOCAL_INDEX_RE = re.compile(r"([-A-Za-z0-9_-]*={0,3})-index.json")


@dataclass(frozen=True)
class MediaType:
    """A modelkit layer media type: its base type and compression."""

    base_type: str = ""
    compression: str = ""

    def __str__(self) -> str:
        if self.base_type == CONFIG_TYPE:
            return CONFIG_MEDIA_TYPE
        if self.compression == NONE_COMPRESSION:
            return f"application/vnd.kitops.modelkit.{self.base_type}.v1.tar"
        comp = self.compression
        if comp == GZIP_FASTEST_COMPRESSION:
            comp = GZIP_COMPRESSION
        return f"application/vnd.kitops.modelkit.{self.base_type}.v1.tar+{comp}"


MODEL_CONFIG_MEDIA_TYPE = MediaType(base_type=CONFIG_TYPE)


def default_kitfile_names() -> list[str]:
    """Return the file names accepted as a Kitfile, in order of preference."""
    return ["Kitfile", "kitfile", ".kitfile"]


def default_config_path() -> str:
    """Return the platform's default configuration and cache directory.

    Linux uses $XDG_DATA_HOME/kitops (falling back to ~/.local/share/kitops),
    macOS ~/Library/Caches/kitops and Windows %LocalAppData%\\kitops.
    """
    if sys.platform.startswith("linux"):
        datahome = os.environ.get("XDG_DATA_HOME", "")
        if not datahome:
            userhome = os.environ.get("HOME", "")
            if not userhome:
                raise RuntimeError("could not get $HOME directory")
            datahome = os.path.join(userhome, ".local", "share")
        return os.path.join(datahome, DEFAULT_CONFIG_SUBDIR)
    if sys.platform == "darwin":
        userhome = os.environ.get("HOME", "")
        if not userhome:
            raise RuntimeError("$HOME is not defined")
        return os.path.join(userhome, "Library", "Caches", DEFAULT_CONFIG_SUBDIR)
    if sys.platform == "win32":
        appdata = os.environ.get("LocalAppData", "")
        if not appdata:
            raise RuntimeError("%LocalAppData% is not defined")
        return os.path.join(appdata, DEFAULT_CONFIG_SUBDIR)
    raise RuntimeError("Unrecognized operating system")


def storage_path(config_base: str) -> str:
    return os.path.join(config_base, STORAGE_SUBPATH)


def ingest_path(storage_base: str) -> str:
    return os.path.join(storage_base, "ingest")


def harness_path(config_base: str) -> str:
    return os.path.join(config_base, HARNESS_SUBPATH)


def credentials_path(config_base: str) -> str:
    return os.path.join(config_base, CREDENTIALS_SUBPATH)


def index_json_path(storage_base: str) -> str:
    """Return the path of the index.json of the OCI index at storage_base."""
    return os.path.join(storage_base, "index.json")


def _encode_repo(repo: str) -> str:
    return base64.urlsafe_b64encode(repo.encode("utf-8")).decode("ascii")


def index_json_path_for_repo(storage_base: str, repo: str) -> str:
    """Return the path of an index.json scoped to one repository."""
    # The repository may contain characters that are not valid in file names
    return os.path.join(storage_base, f"{_encode_repo(repo)}-index.json")


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip(os.sep + (os.altsep or ""))
    if not stripped:
        return os.sep
    return os.path.basename(stripped)


def repo_for_index_json_path(index_path: str) -> str:
    """Return the repository encoded in a name made by index_json_path_for_repo."""
    filename = _base(index_path)
    match = _LOCAL_INDEX_RE.fullmatch(filename)
    if match is None:
        raise ValueError(f"invalid local OCI index name: {filename}")
    try:
        repo_bytes = base64.b64decode(match.group(1), altchars=b"-_", validate=True)
    except binascii.Error as exc:
        raise ValueError(f"failed to parse repo from index {index_path}: {exc}") from exc
    return repo_bytes.decode("utf-8", errors="replace")


def file_is_local_index(index_path: str) -> bool:
    return _LOCAL_INDEX_RE.fullmatch(_base(index_path)) is not None


def tag_index_path_for_repo(storage_base: str, repo: str) -> str:
    return os.path.join(storage_base, f"{_encode_repo(repo)}-tags.json")


def parse_media_type(s: str) -> MediaType:
    """Parse a modelkit media type string; unknown strings give an empty MediaType."""
    if s == CONFIG_MEDIA_TYPE:
        return MediaType(base_type=CONFIG_TYPE)
    match = _MEDIA_TYPE_RE.match(s)
    if match is None:
        return MediaType()
    return MediaType(
        base_type=match.group(1),
        compression=match.group(2) or NONE_COMPRESSION,
    )


def validate_compression(compression: str) -> None:
    """Raise ValueError unless compression is a supported compression name."""
    if compression not in (NONE_COMPRESSION, GZIP_COMPRESSION, GZIP_FASTEST_COMPRESSION):
        raise ValueError(
            "invalid compression type: must be one of 'none', 'gzip', or 'gzip-fastest'"
        )


def format_media_type_for_user(media_type: str) -> str:
    """Return a short, human-readable name for a media type."""
    if media_type == MEDIA_TYPE_IMAGE_MANIFEST:
        return "manifest"
    return parse_media_type(media_type).base_type