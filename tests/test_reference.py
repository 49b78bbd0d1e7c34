import os

import pytest

from modelkit.reference import (
    DEFAULT_REGISTRY,
    DEFAULT_REPOSITORY,
    InvalidReferenceError,
    NotAModelKitError,
    Reference,
    default_reference,
    format_repository_for_display,
    is_model_kit_reference,
    layer_paths_from_kitfile,
    parse_reference,
    reference_is_digest,
    repo_path,
)

DIGEST = "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"


@pytest.mark.parametrize(
    "text, expected_ref, expected_tags",
    [
        (
            "testregistry.io/test-organization/test-repository:test-tag",
            Reference("testregistry.io", "test-organization/test-repository", "test-tag"),
            [],
        ),
        (
            "testregistry.io/test-organization/test-repository:test-tag,extraTag1,extraTag2",
            Reference("testregistry.io", "test-organization/test-repository", "test-tag"),
            ["extraTag1", "extraTag2"],
        ),
        (
            "test-repository:test-tag,extraTag1,extraTag2",
            Reference(DEFAULT_REGISTRY, "test-repository", "test-tag"),
            ["extraTag1", "extraTag2"],
        ),
        (
            "localhost:5000/test-organization/test-repository:test-tag,extraTag1,extraTag2",
            Reference("localhost:5000", "test-organization/test-repository", "test-tag"),
            ["extraTag1", "extraTag2"],
        ),
        (DIGEST, Reference(DEFAULT_REGISTRY, DEFAULT_REPOSITORY, DIGEST), []),
        (
            "test-organization/test-repository:test-tag,extraTag1,extraTag2",
            Reference("localhost", "test-organization/test-repository", "test-tag"),
            ["extraTag1", "extraTag2"],
        ),
        ("a/b/c/d", Reference("localhost", "a/b/c/d", ""), []),
        ("test.io/a/b/c/d", Reference("test.io", "a/b/c/d", ""), []),
        ("testrepo@" + DIGEST, Reference(DEFAULT_REGISTRY, "testrepo", DIGEST), []),
        (
            "testrepo:ignoredtag@" + DIGEST,
            Reference(DEFAULT_REGISTRY, "testrepo", DIGEST),
            [],
        ),
        (
            "testorg/testrepo@" + DIGEST,
            Reference(DEFAULT_REGISTRY, "testorg/testrepo", DIGEST),
            [],
        ),
        ("testorg.com/testrepo@" + DIGEST, Reference("testorg.com", "testrepo", DIGEST), []),
    ],
)
def test_parse_reference(text, expected_ref, expected_tags):
    ref, tags = parse_reference(text)
    assert ref == expected_ref
    assert tags == expected_tags


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Uppercase:tag",
        "-:tag",
        "repo:bad tag!",
        "repo@sha256:abc",
        "localhost:abc/repo:tag",
        "repo--:tag",
    ],
)
def test_parse_reference_errors(text):
    with pytest.raises(InvalidReferenceError):
        parse_reference(text)


def test_lowercase_error_message():
    with pytest.raises(InvalidReferenceError, match=r"repository \(MyRepo\) name must be lowercase"):
        parse_reference("MyRepo:tag")


def test_reference_is_digest():
    assert reference_is_digest(DIGEST) is True
    assert reference_is_digest("sha512:" + "0" * 128) is True
    assert reference_is_digest("sha256:" + "A" * 64) is False
    assert reference_is_digest("sha256:abc") is False
    assert reference_is_digest("md5:abc") is False
    assert reference_is_digest("latest") is False


def test_default_reference():
    assert default_reference() == Reference("localhost", "_", "")


def test_reference_str():
    assert str(Reference("localhost", "repo", "v1")) == "localhost/repo:v1"
    assert str(Reference("localhost", "repo", DIGEST)) == "localhost/repo@" + DIGEST
    assert str(Reference("reg.io", "repo")) == "reg.io/repo"
    assert str(Reference("reg.io", "")) == "reg.io"


def test_host():
    assert Reference("docker.io", "library/x").host() == "registry-1.docker.io"
    assert Reference("localhost:5000", "x").host() == "localhost:5000"


def test_validators():
    with pytest.raises(InvalidReferenceError, match="invalid registry"):
        Reference("bad host", "repo").validate_registry()
    with pytest.raises(InvalidReferenceError, match="invalid repository"):
        Reference("localhost", "Repo").validate_repository()
    with pytest.raises(InvalidReferenceError, match="invalid tag"):
        Reference("localhost", "repo", "-tag").validate_reference_as_tag()
    with pytest.raises(InvalidReferenceError, match="invalid digest"):
        Reference("localhost", "repo", "sha256:zz").validate_reference_as_digest()


def test_format_repository_for_display():
    assert format_repository_for_display("localhost/testorg/repo") == "testorg/repo"
    assert format_repository_for_display("localhost/_@" + DIGEST) == DIGEST
    assert format_repository_for_display("reg.io/repo") == "reg.io/repo"


def test_repo_path():
    ref = Reference("localhost:5000", "org/repo", "tag")
    assert repo_path("/storage", ref) == os.path.normpath("/storage/localhost:5000/org/repo")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("myrepo:latest", True),
        ("org/repo@" + DIGEST, True),
        ("model.bin", False),
        ("./models/model.gguf", False),
        ("Foo:bar", False),
    ],
)
def test_is_model_kit_reference(text, expected):
    assert is_model_kit_reference(text) is expected


def test_layer_paths_from_kitfile():
    kitfile = {
        "code": [{"path": " ./src/ "}],
        "datasets": [{"path": "data//train"}],
        "docs": [{"path": "./docs"}],
        "model": {"path": "model.gguf", "parts": [{"path": "parts/"}]},
    }
    assert layer_paths_from_kitfile(kitfile) == [
        "src",
        os.path.normpath("data/train"),
        "./docs",
        "model.gguf",
        "parts",
    ]


def test_layer_paths_skip_empty_model_path():
    assert layer_paths_from_kitfile({"model": {"path": "", "parts": []}}) == []


def test_not_a_modelkit_message():
    assert str(NotAModelKitError()) == "reference exists but is not a modelkit"