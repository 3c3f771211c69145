# Standard library
import os

# Third-party
import pytest

# Local imports
from blobsy.backendurl import (
    parse_backend_url,
    resolve_local_path,
    validate_backend_url)
from blobsy.blobsyerror import BlobsyValidationError


def test_url01_cloud():
    # S3 with normalized prefix
    parsed = parse_backend_url("s3://my-bucket/project/v1")
    assert parsed == {
        "type": "s3",
        "bucket": "my-bucket",
        "prefix": "project/v1/",
        "url": "s3://my-bucket/project/v1",
    }
    # Other providers
    assert parse_backend_url("gs://my-bucket/p/")["type"] == "gcs"
    assert parse_backend_url("azure://container/p/")["type"] == "azure"


def test_url02_local():
    # Local path
    parsed = parse_backend_url("local:../remote")
    assert parsed["type"] == "local"
    assert parsed["path"] == "../remote"


@pytest.mark.parametrize("url", [
    "",
    "s3://my-bucket",
    "s3://my-bucket/",
    "s3://ab/prefix/",
    "s3://My_Bucket/prefix/",
    "s3://-bucket/prefix/",
    "s3://my-bucket//x/",
    "s3://my-bucket/a\\b/",
    "s3://my-bucket/p/?x=1",
    "s3:my-bucket/p/",
    "ftp://host/p/",
    "local:",
])
def test_url03_invalid(url):
    with pytest.raises(BlobsyValidationError):
        parse_backend_url(url)


def test_url04_bare_path():
    # Suggest local: prefix
    try:
        parse_backend_url("../remote")
    except BlobsyValidationError as err:
        assert "local:../remote" in str(err)
    else:
        assert False


def test_url05_resolve(tmp_path, monkeypatch):
    # Relative to repo
    root = str(tmp_path / "repo")
    assert resolve_local_path("../remote", root) == \
        os.path.join(str(tmp_path), "remote")
    # Home folder
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert resolve_local_path("~/blobs", root) == \
        os.path.join(str(tmp_path), "home", "blobs")


def test_url06_inside_repo(tmp_path):
    # Layout
    root = tmp_path / "repo"
    root.mkdir()
    # Outside is fine
    validate_backend_url(parse_backend_url("local:../remote"), str(root))
    # Cloud URLs aren't checked
    validate_backend_url(parse_backend_url("s3://bkt/p/"), str(root))
    # Inside is refused
    with pytest.raises(BlobsyValidationError):
        validate_backend_url(parse_backend_url("local:blobs"), str(root))
