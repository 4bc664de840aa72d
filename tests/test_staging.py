import asyncio
import io

import pytest

from vector_gateway.conversion.errors import UploadTooLarge

from conftest import stage


def test_ensure_is_idempotent(tmp_path):
    from vector_gateway.conversion import StagingArea

    area = StagingArea(tmp_path / "a" / "b")
    area.ensure()
    area.ensure()
    assert area.base_dir.is_dir()


def test_acquire_persists_upload(staging, staging_dir):
    staged = stage(staging, b"%PDF-1.4 hello", filename="drawing.pdf")
    assert staged.upload.path.parent == staging_dir.resolve()
    assert staged.upload.path.read_bytes() == b"%PDF-1.4 hello"
    assert staged.upload.filename == "drawing.pdf"
    assert staged.upload.size_bytes == 14
    assert staged.paths() == {staged.upload.path}


def test_artifacts_derive_from_upload_path(staging):
    staged = stage(staging, b"x")
    out = staging.new_artifact(staged, "outlined.pdf")
    assert out.name == f"{staged.upload.token}_outlined.pdf"
    assert out in staged.paths()


def test_oversized_upload_is_rejected_and_removed(staging, staging_dir):
    with pytest.raises(UploadTooLarge):
        stage(staging, b"0" * (1024 * 1024 + 1), max_upload_mb=1)
    assert list(staging_dir.iterdir()) == []


def test_concurrent_uploads_never_share_paths(staging):
    async def upload_many(n: int):
        async def one(i: int):
            buf = io.BytesIO(f"file-{i}".encode())

            async def reader(size: int) -> bytes:
                await asyncio.sleep(0)
                return buf.read(size)

            return await staging.acquire(f"f{i}.pdf", reader, max_upload_mb=1)

        return await asyncio.gather(*(one(i) for i in range(n)))

    staged = asyncio.run(upload_many(25))
    paths = [s.upload.path for s in staged]
    assert len(set(paths)) == 25
    for i, s in enumerate(staged):
        assert s.upload.path.read_bytes() == f"file-{i}".encode()


def test_release_removes_files_and_tolerates_missing(staging, staging_dir):
    staged = stage(staging, b"data")
    artifact = staging.new_artifact(staged, "converted.pdf")
    artifact.write_bytes(b"out")
    never_written = staging.new_artifact(staged, "fallback.pdf")

    staging.release(staged.paths())
    staging.release(staged.paths())

    assert not never_written.exists()
    assert list(staging_dir.iterdir()) == []


def test_release_logs_unexpected_errors_without_raising(staging, staging_dir):
    blocker = staging_dir / "not-a-file"
    blocker.mkdir()
    staged = stage(staging, b"data")

    staging.release({blocker, staged.upload.path})

    assert blocker.exists()
    assert not staged.upload.path.exists()
