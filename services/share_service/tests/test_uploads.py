"""Tests for the upload endpoint and UploadCoordinator."""

import asyncio
import io
import json
import threading
import zipfile
from pathlib import Path

import pytest
from fastapi import UploadFile

from share_service.exceptions import StorageError
from share_service.naming import MAX_NAME_BYTES
from share_service.retention import RetentionStore
from share_service.storage import BlobDirectory
from share_service.uploads import UploadCoordinator


def _blobs(settings):
    return sorted(p.name for p in Path(settings.uploads_dir).iterdir())


def _groups(settings):
    path = Path(settings.groups_file)
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


class TestUploadSingleFile:
    """Tests for single-file uploads."""

    def test_single_file_gets_direct_link(self, client, settings, make_files):
        """Test one file is linked directly and creates no group."""
        resp = client.post("/upload", files=make_files(("notes-v1.txt", b"hello")))

        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "File(s) processed successfully"
        assert body["file_count"] == 1
        assert body["uploaded_files"] == ["notes-v1.txt"]
        assert body["qr_code"].startswith("data:image/png;base64,")

        [stored] = _blobs(settings)
        assert stored.endswith("-notes-v1.txt")
        assert body["download_link"] == f"http://testserver/download-file/{stored}"
        assert _groups(settings) == {}

    def test_blob_content_written(self, client, settings, make_files):
        """Test the stored blob holds the uploaded bytes."""
        client.post("/upload", files=make_files(("a.bin", b"\x00\x01payload")))

        [stored] = _blobs(settings)
        assert (Path(settings.uploads_dir) / stored).read_bytes() == b"\x00\x01payload"


class TestUploadGroup:
    """Tests for multi-file uploads."""

    def test_group_created_with_shared_token(self, client, settings, make_files):
        """Test several files share one token which becomes the group id."""
        resp = client.post(
            "/upload",
            files=make_files(("b.txt", b"b"), ("a-1.txt", b"a"), ("c.txt", b"c")),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["file_count"] == 3
        assert body["uploaded_files"] == ["b.txt", "a-1.txt", "c.txt"]

        groups = _groups(settings)
        [(group_id, stored)] = groups.items()
        assert stored == [f"{group_id}-b.txt", f"{group_id}-a-1.txt", f"{group_id}-c.txt"]
        assert body["download_link"] == f"http://testserver/download-group/{group_id}"
        assert sorted(stored) == _blobs(settings)

    def test_separate_uploads_get_separate_groups(self, client, settings, make_files):
        """Test two batches never share a group id."""
        client.post("/upload", files=make_files(("x.txt", b"1"), ("y.txt", b"2")))
        client.post("/upload", files=make_files(("x.txt", b"3"), ("y.txt", b"4")))

        assert len(_groups(settings)) == 2
        assert len(_blobs(settings)) == 4


class TestUploadLimits:
    """Tests for request validation."""

    def test_too_many_files_rejected_before_writing(self, client, settings, make_files):
        """Test five files fail with the count limit and write nothing."""
        files = make_files(*[(f"f{i}.txt", b"x") for i in range(5)])

        resp = client.post("/upload", files=files)

        assert resp.status_code == 400
        assert resp.json() == {
            "error": "Too many files selected. Maximum is 4.",
            "code": "LIMIT_FILE_COUNT",
        }
        assert _blobs(settings) == []
        assert _groups(settings) == {}

    def test_file_too_large(self, client, settings, make_files):
        """Test an oversized file fails with the size limit."""
        resp = client.post("/upload", files=make_files(("big.bin", b"x" * 2048)))

        assert resp.status_code == 400
        assert resp.json()["code"] == "LIMIT_FILE_SIZE"
        assert "File too large" in resp.json()["error"]
        assert _blobs(settings) == []

    def test_oversized_file_rolls_back_batch(self, client, settings, make_files):
        """Test earlier blobs of a failing batch are removed and no group is kept."""
        resp = client.post(
            "/upload",
            files=make_files(("ok.txt", b"fine"), ("big.bin", b"x" * 2048)),
        )

        assert resp.status_code == 400
        assert _blobs(settings) == []
        assert _groups(settings) == {}

    def test_no_files(self, client):
        """Test a request without files is rejected."""
        resp = client.post("/upload", data={"other": "field"})

        assert resp.status_code == 400
        assert resp.json() == {"error": "No files uploaded", "code": "NO_FILES"}

    def test_default_limits_message(self):
        """Test the default size limit is reported in megabytes."""
        from share_service.config import Settings
        from share_service.exceptions import FileTooLargeError

        err = FileTooLargeError(Settings().max_file_size)

        assert err.message == "File too large. Maximum size is 50MB."


def _raw_multipart(*parts):
    boundary = "sharetestboundary"
    body = b""
    for filename, content in parts:
        body += (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="files"; filename="{filename}"\r\n'
            "Content-Type: application/octet-stream\r\n\r\n"
        ).encode("utf-8") + content + b"\r\n"
    body += f"--{boundary}--\r\n".encode("utf-8")
    return body, {"Content-Type": f"multipart/form-data; boundary={boundary}"}


class TestUploadFilenames:
    """Tests for awkward client filenames."""

    def test_duplicate_names_are_suffixed(self, client, settings, make_files):
        """Test two files with one name both survive under distinct names."""
        resp = client.post("/upload", files=make_files(("image.jpg", b"1"), ("image.jpg", b"2")))

        assert resp.status_code == 200
        assert resp.json()["uploaded_files"] == ["image.jpg", "image (1).jpg"]
        [group_id] = _groups(settings)

        archive = client.get(f"/download-group/{group_id}")

        with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
            assert sorted(zf.namelist()) == ["image (1).jpg", "image.jpg"]
            assert zf.read("image.jpg") == b"1"
            assert zf.read("image (1).jpg") == b"2"

    def test_nul_in_filename_is_stripped(self, client, settings):
        """Test a NUL byte in a filename does not fail the batch."""
        body, headers = _raw_multipart(("ok.txt", b"1"), ("a\x00b.txt", b"2"))

        resp = client.post("/upload", content=body, headers=headers)

        assert resp.status_code == 200
        assert resp.json()["uploaded_files"] == ["ok.txt", "ab.txt"]
        assert len(_blobs(settings)) == 2

    def test_long_filename_is_shortened(self, client, settings, make_files):
        """Test a name beyond the filesystem limit is cut, keeping its extension."""
        resp = client.post("/upload", files=make_files(("x" * 300 + ".txt", b"1")))

        assert resp.status_code == 200
        [name] = resp.json()["uploaded_files"]
        assert name.endswith(".txt")
        assert len(name.encode("utf-8")) <= MAX_NAME_BYTES
        [stored] = _blobs(settings)
        assert stored.endswith(name)


class TestUploadStorageFailure:
    """Tests for server-side failures during upload."""

    def test_rejected_blob_name_rolls_back_batch(self, client, settings, make_files, monkeypatch):
        """Test a blob name refused by the directory still removes earlier blobs."""
        blobs = client.app.state.blobs
        original = blobs.path_for
        calls = []

        def picky(stored_name):
            calls.append(stored_name)
            if len(calls) == 2:
                raise ValueError("unsafe blob name")
            return original(stored_name)

        monkeypatch.setattr(blobs, "path_for", picky)

        resp = client.post("/upload", files=make_files(("a.txt", b"1"), ("b.txt", b"2")))
        monkeypatch.undo()

        assert resp.status_code == 500
        assert resp.json()["code"] == "STORAGE_ERROR"
        assert _blobs(settings) == []

    def test_group_write_failure_is_server_error(self, client, settings, make_files, monkeypatch):
        """Test a failed group write returns a generic 500 and removes the blobs."""
        store = client.app.state.store

        def boom(group_id, stored_names):
            raise StorageError()

        monkeypatch.setattr(store, "put_group", boom)

        resp = client.post("/upload", files=make_files(("a.txt", b"1"), ("b.txt", b"2")))

        assert resp.status_code == 500
        assert resp.json()["code"] == "STORAGE_ERROR"
        assert settings.data_dir not in resp.text
        assert _blobs(settings) == []

    def test_blob_write_failure_is_server_error(self, client, settings, make_files, monkeypatch):
        """Test an OS error while writing a blob becomes a storage error."""
        blobs = client.app.state.blobs
        original = blobs.save_upload_file
        calls = []

        async def flaky(upload_file, stored_name, max_size):
            calls.append(stored_name)
            if len(calls) == 2:
                raise OSError("disk full")
            return await original(upload_file, stored_name, max_size)

        monkeypatch.setattr(blobs, "save_upload_file", flaky)

        resp = client.post("/upload", files=make_files(("a.txt", b"1"), ("b.txt", b"2")))

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "An unknown server error occurred during upload.",
            "code": "STORAGE_ERROR",
        }
        assert _blobs(settings) == []


@pytest.mark.parametrize("count", [2, 3, 4])
def test_group_sizes_within_limit(client, settings, make_files, count):
    """Test every allowed multi-file batch creates exactly one group."""
    resp = client.post("/upload", files=make_files(*[(f"f{i}", b"x") for i in range(count)]))

    assert resp.status_code == 200
    [stored] = _groups(settings).values()
    assert len(stored) == count


class TestUploadCoordinatorThreads:
    """Tests for keeping blocking work off the event loop."""

    def test_group_write_and_qr_run_in_worker_threads(self, tmp_path):
        """Test the group write and QR rendering leave the loop thread free."""
        blobs = BlobDirectory(tmp_path / "uploads")
        blobs.ensure()
        store = RetentionStore(tmp_path / "g.json")
        loop_threads = []
        seen = {}

        def qr_renderer(link):
            seen["qr"] = threading.get_ident()
            return "data:image/png;base64,"

        coordinator = UploadCoordinator(
            blobs, store, "http://share", max_file_size=1024, max_file_count=4,
            qr_renderer=qr_renderer,
        )
        original_put = store.put_group

        def put_group(group_id, stored_names):
            seen["put_group"] = threading.get_ident()
            original_put(group_id, stored_names)

        store.put_group = put_group

        async def run():
            loop_threads.append(threading.get_ident())
            files = [
                UploadFile(file=io.BytesIO(b"1"), filename="a.txt"),
                UploadFile(file=io.BytesIO(b"2"), filename="b.txt"),
            ]
            return await coordinator.upload(files)

        result = asyncio.run(run())

        assert result.group_id is not None
        assert seen["put_group"] != loop_threads[0]
        assert seen["qr"] != loop_threads[0]
        assert store.get_group(result.group_id) is not None
