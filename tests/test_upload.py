import pytest

from modelkit.upload import UPLOAD_CHUNK_DEFAULT_SIZE, UploadFormat, get_upload_format


def test_chunk_size_is_100_mib_boundary():
    hundred_mib = 100 * 1024 * 1024
    assert UPLOAD_CHUNK_DEFAULT_SIZE == hundred_mib
    assert get_upload_format("registry.example.com", hundred_mib - 1) is (
        UploadFormat.MONOLITHIC_PUT
    )
    assert get_upload_format("registry.example.com", hundred_mib) is (
        UploadFormat.CHUNKED_PATCH
    )


@pytest.mark.parametrize("size", [0, 1, UPLOAD_CHUNK_DEFAULT_SIZE * 5])
def test_ghcr_is_always_monolithic(size):
    assert get_upload_format("ghcr.io", size) is UploadFormat.MONOLITHIC_PUT


def test_small_blob_is_monolithic():
    assert get_upload_format("registry.example.com", UPLOAD_CHUNK_DEFAULT_SIZE - 1) is (
        UploadFormat.MONOLITHIC_PUT
    )


def test_large_blob_is_chunked():
    assert get_upload_format("registry.example.com", UPLOAD_CHUNK_DEFAULT_SIZE) is (
        UploadFormat.CHUNKED_PATCH
    )
    assert get_upload_format("localhost:5000", UPLOAD_CHUNK_DEFAULT_SIZE * 3) is (
        UploadFormat.CHUNKED_PATCH
    )