# Third-party
import pytest

# Local imports
from blobsy import backend_awscli
from blobsy.backend_awscli import AwsCliBackend
from blobsy.blobsyerror import BlobsyFileNotFoundError, BlobsyTransferError


class FakeCall(object):
    __slots__ = ("calls", "results")

    def __init__(self, *results):
        self.calls = []
        self.results = list(results)

    def __call__(self, cmd, cwd=None, env=None, timeout=None):
        self.calls.append(cmd)
        return self.results.pop(0)


def test_awscli01_push(tmp_path, monkeypatch):
    # Fake aws
    fake = FakeCall(("", "", 0))
    monkeypatch.setattr(backend_awscli, "call_oe", fake)
    # Local file
    fsrc = tmp_path / "a.bin"
    fsrc.write_bytes(b"x")
    # Push
    backend = AwsCliBackend(
        "bkt", "proj/", region="us-west-2", endpoint="http://localhost:9000")
    backend.push(str(fsrc), "k/a.bin")
    # Command
    assert fake.calls[0] == [
        "aws", "s3", "cp", str(fsrc), "s3://bkt/proj/k/a.bin",
        "--endpoint-url", "http://localhost:9000",
        "--region", "us-west-2",
    ]


def test_awscli02_exists(monkeypatch):
    # Present, then missing two ways
    fake = FakeCall(
        ("{}", "", 0),
        ("", "An error occurred (404)", 254),
        ("", "Not Found", 255))
    monkeypatch.setattr(backend_awscli, "call_oe", fake)
    backend = AwsCliBackend("bkt", "proj/")
    assert backend.exists("k/a.bin")
    assert not backend.exists("k/b.bin")
    assert not backend.exists("k/c.bin")
    assert fake.calls[0][:3] == ["aws", "s3api", "head-object"]
    assert "proj/k/a.bin" in fake.calls[0]


def test_awscli03_errors(monkeypatch):
    # Access denied is not "missing"
    fake = FakeCall(("", "An error occurred (403) Forbidden", 1))
    monkeypatch.setattr(backend_awscli, "call_oe", fake)
    backend = AwsCliBackend("bkt", "proj/")
    with pytest.raises(BlobsyTransferError) as excinfo:
        backend.exists("k/a.bin")
    assert excinfo.value.category == "authentication"


def test_awscli04_not_installed(monkeypatch):
    # Missing program
    def fake(cmd, **kw):
        raise BlobsyFileNotFoundError("Command not found: aws")
    monkeypatch.setattr(backend_awscli, "call_oe", fake)
    backend = AwsCliBackend("bkt", "proj/")
    with pytest.raises(BlobsyFileNotFoundError) as excinfo:
        backend.health_check()
    assert "aws CLI" in str(excinfo.value)
