"""Choice of how a blob is uploaded to a registry."""

from __future__ import annotations

from enum import Enum

from modelkit import output

UPLOAD_CHUNK_DEFAULT_SIZE = 100 << 20


class UploadFormat(Enum):
    """How a blob is sent: in one PUT or as a series of PATCH chunks."""

    MONOLITHIC_PUT = 0
    CHUNKED_PATCH = 1
    UNDEFINED = 2


def get_upload_format(registry: str, size: int) -> UploadFormat:
    """Return the upload format to use for a blob of size bytes on registry."""
    output.safe_debug("Getting upload format for: %s", registry)
    if registry == "ghcr.io":
        # This registry rejects PATCH requests larger than a few MiB
        return UploadFormat.MONOLITHIC_PUT
    if size < UPLOAD_CHUNK_DEFAULT_SIZE:
        return UploadFormat.MONOLITHIC_PUT
    return UploadFormat.CHUNKED_PATCH