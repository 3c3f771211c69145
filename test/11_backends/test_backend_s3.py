# Third-party
import pytest
from botocore.exceptions import ClientError

# Local imports
from blobsy.backend_s3 import BuiltinS3Backend, categorize_s3_error
from blobsy.blobsyerror import BlobsyTransferError, BlobsyValidationError
from blobsy.hashutils import compute_hash


class FakeClient(object):
    r"""Minimal stand-in for a boto3 S3 client backed by a dict"""
    __slots__ = ("objects", "calls")

    def __init__(self):
        self.objects = {}
        self.calls = []

    def upload_file(self, fname, bucket, key):
        self.calls.append(("upload_file", bucket, key))
        with open(fname, "rb") as fp:
            self.objects[key] = fp.read()

    def download_file(self, bucket, key, fname):
        self.calls.append(("download_file", bucket, key))
        if key not in self.objects:
            raise _client_error("404", "HeadObject")
        with open(fname, "wb") as fp:
            fp.write(self.objects[key])

    def head_object(self, Bucket, Key):
        self.calls.append(("head_object", Bucket, Key))
        if Key not in self.objects:
            raise _client_error("404", "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete_object", Bucket, Key))
        self.objects.pop(Key, None)

    def put_object(self, Bucket, Key, Body):
        self.calls.append(("put_object", Bucket, Key))
        self.objects[Key] = Body


def _client_error(code, op):
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


def test_s301_roundtrip(tmp_path):
    # Backend with fake client
    client = FakeClient()
    backend = BuiltinS3Backend("bkt", "proj/", client=client)
    assert backend.type == "s3"
    # Push
    fsrc = tmp_path / "a.bin"
    fsrc.write_bytes(b"abc" * 1000)
    backend.push(str(fsrc), "k/a.bin")
    assert client.objects["proj/k/a.bin"] == fsrc.read_bytes()
    # Exists
    assert backend.exists("k/a.bin")
    assert not backend.exists("k/b.bin")
    # Pull
    fdst = tmp_path / "b.bin"
    backend.pull("k/a.bin", str(fdst), compute_hash(str(fsrc)))
    assert fdst.read_bytes() == fsrc.read_bytes()
    # Delete
    backend.delete("k/a.bin")
    assert not backend.exists("k/a.bin")
    # Health check leaves nothing behind
    backend.health_check()
    assert client.objects == {}


def test_s302_pull_errors(tmp_path):
    client = FakeClient()
    client.objects["proj/k/a.bin"] = b"remote"
    backend = BuiltinS3Backend("bkt", "proj/", client=client)
    # Existing local file
    fdst = tmp_path / "a.bin"
    fdst.write_bytes(b"local")
    # Bad hash
    with pytest.raises(BlobsyValidationError):
        backend.pull("k/a.bin", str(fdst), "sha256:" + "f" * 64)
    assert fdst.read_bytes() == b"local"
    # Missing object
    with pytest.raises(BlobsyTransferError) as excinfo:
        backend.pull("k/zzz.bin", str(fdst))
    assert excinfo.value.category == "not_found"
    assert [p.name for p in tmp_path.iterdir()] == ["a.bin"]


def test_s303_categorize():
    assert categorize_s3_error(
        _client_error("AccessDenied", "PutObject")) == "authentication"
    assert categorize_s3_error(
        _client_error("NoSuchBucket", "PutObject")) == "not_found"
    assert categorize_s3_error(
        _client_error("SlowDown", "PutObject")) == "quota"
    assert categorize_s3_error(ValueError("weird")) == "unknown"
