"""Tests for blob/metadata reconciliation."""

import uuid
from pathlib import Path

import pytest

from fileshare.exceptions import BlobForbiddenError, BlobNotFoundError, NotABlobError
from fileshare.models import FileKind
from fileshare.services.file_store import FileRecordStore
from fileshare.services.reconciler import BlobReconciler


async def test_resolve_present_blob(reconciler: BlobReconciler, make_record, write_blob, upload_dir: Path) -> None:
    write_blob("abc.bin", b"hello")
    record = await make_record(stored_path="abc.bin", display_name="Hello World.txt")

    resolved = await reconciler.resolve_for_download(record.id)

    assert resolved.record_id == record.id
    assert resolved.path == upload_dir.resolve() / "abc.bin"
    assert resolved.size == 5
    assert resolved.display_name == "Hello World.txt"


async def test_missing_blob_is_idempotently_not_found(
    reconciler: BlobReconciler, store: FileRecordStore, make_record
) -> None:
    record = await make_record(stored_path="abc.bin")

    with pytest.raises(BlobNotFoundError):
        await reconciler.resolve_for_download(record.id)
    assert await store.find_by_id(record.id) is None

    with pytest.raises(BlobNotFoundError):
        await reconciler.resolve_for_download(record.id)
    assert await store.find_by_id(record.id) is None


async def test_traversal_record_is_forbidden_and_deleted(
    reconciler: BlobReconciler, store: FileRecordStore, make_record
) -> None:
    record = await make_record(stored_path="../../etc/passwd")

    with pytest.raises(BlobForbiddenError) as excinfo:
        await reconciler.resolve_for_download(record.id)

    assert "passwd" not in str(excinfo.value)
    assert await store.find_by_id(record.id) is None


@pytest.mark.parametrize("stored_path", ["..%2f..%2fetc%2fpasswd", "..\\..\\etc\\passwd", "/etc/passwd"])
async def test_encoded_traversal_records_are_forbidden(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, stored_path: str
) -> None:
    record = await make_record(stored_path=stored_path)

    with pytest.raises(BlobForbiddenError):
        await reconciler.resolve_for_download(record.id)
    assert await store.find_by_id(record.id) is None


async def test_empty_stored_path_is_not_found_and_deleted(
    reconciler: BlobReconciler, store: FileRecordStore, make_record
) -> None:
    record = await make_record(stored_path="")

    with pytest.raises(BlobNotFoundError):
        await reconciler.resolve_for_download(record.id)
    assert await store.find_by_id(record.id) is None


async def test_directory_in_place_of_blob_is_not_found(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, upload_dir: Path
) -> None:
    (upload_dir / "abc.bin").mkdir()
    record = await make_record(stored_path="abc.bin")

    with pytest.raises(BlobNotFoundError):
        await reconciler.resolve_for_download(record.id)
    assert await store.find_by_id(record.id) is None


async def test_link_record_is_not_a_blob(
    reconciler: BlobReconciler, store: FileRecordStore, make_record
) -> None:
    link = await make_record(stored_path="", kind=FileKind.LINK, url="https://example.com/tool.zip")

    with pytest.raises(NotABlobError):
        await reconciler.resolve_for_download(link.id)
    assert await store.find_by_id(link.id) is not None


async def test_unknown_id_is_not_found(reconciler: BlobReconciler) -> None:
    with pytest.raises(BlobNotFoundError):
        await reconciler.resolve_for_download(uuid.uuid4())


async def test_live_size_overrides_declared_size(reconciler: BlobReconciler, make_record, write_blob) -> None:
    write_blob("abc.bin", b"0123456789")
    record = await make_record(stored_path="abc.bin", size_bytes=999)

    resolved = await reconciler.resolve_for_download(record.id)
    assert resolved.size == 10

    [(listed, size)] = await reconciler.list_blobs()
    assert listed.id == record.id
    assert size == 10


async def test_listing_excludes_and_removes_drifted_records(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, write_blob
) -> None:
    kept = []
    for i in range(3):
        write_blob(f"ok-{i}.bin")
        kept.append(await make_record(stored_path=f"ok-{i}.bin"))
    await make_record(stored_path="missing-1.bin")
    await make_record(stored_path="../escape.bin")

    listed = await reconciler.list_blobs()

    assert {record.id for record, _ in listed} == {r.id for r in kept}
    remaining = await store.find(FileKind.BLOB)
    assert {r.id for r in remaining} == {r.id for r in kept}


async def test_listing_skips_links_without_touching_them(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, write_blob
) -> None:
    write_blob("abc.bin")
    blob = await make_record(stored_path="abc.bin")
    link = await make_record(stored_path="", kind=FileKind.LINK, url="https://example.com")

    listed = await reconciler.list_blobs()

    assert [r.id for r, _ in listed] == [blob.id]
    assert await store.find_by_id(link.id) is not None


async def test_listing_survives_failed_corrective_delete(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, write_blob, monkeypatch
) -> None:
    write_blob("ok.bin", b"abc")
    good_id = (await make_record(stored_path="ok.bin")).id
    bad_id = (await make_record(stored_path="missing.bin")).id

    async def failing_delete(record_id):
        raise RuntimeError("simulated store error")

    monkeypatch.setattr(store, "delete_by_id", failing_delete)

    listed = await reconciler.list_blobs()

    assert [(r.id, size) for r, size in listed] == [(good_id, 3)]
    assert bad_id not in {r.id for r, _ in listed}


async def test_directory_sweep_removes_unreferenced_file(
    reconciler: BlobReconciler, upload_dir: Path, write_blob
) -> None:
    write_blob("abc.bin")

    assert await reconciler.sweep_directory_orphans() == 1
    assert not (upload_dir / "abc.bin").exists()


async def test_directory_sweep_keeps_referenced_and_non_regular_entries(
    reconciler: BlobReconciler, make_record, write_blob, upload_dir: Path
) -> None:
    write_blob("kept.bin")
    write_blob("orphan-1.bin")
    write_blob("orphan-2.bin")
    (upload_dir / "subdir").mkdir()
    await make_record(stored_path="kept.bin")
    await make_record(stored_path="../../etc/passwd")

    assert await reconciler.sweep_directory_orphans() == 2
    assert sorted(p.name for p in upload_dir.iterdir()) == ["kept.bin", "subdir"]


async def test_directory_sweep_on_empty_directory(reconciler: BlobReconciler) -> None:
    assert await reconciler.sweep_directory_orphans() == 0


async def test_directory_sweep_continues_after_unlink_failure(
    reconciler: BlobReconciler, storage, write_blob, upload_dir: Path, monkeypatch
) -> None:
    write_blob("a.bin")
    write_blob("b.bin")
    real_delete = storage.delete

    async def flaky_delete(path):
        if path.name == "a.bin":
            raise PermissionError("read-only")
        return await real_delete(path)

    monkeypatch.setattr(storage, "delete", flaky_delete)

    assert await reconciler.sweep_directory_orphans() == 1
    assert (upload_dir / "a.bin").exists()
    assert not (upload_dir / "b.bin").exists()


async def test_record_sweep_removes_records_without_blobs(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, write_blob
) -> None:
    write_blob("present.bin")
    present = await make_record(stored_path="present.bin")
    await make_record(stored_path="gone-1.bin")
    await make_record(stored_path="gone-2.bin")
    link = await make_record(stored_path="", kind=FileKind.LINK, url="https://example.com")

    report = await reconciler.sweep_record_orphans()

    assert report.removed_count == 2
    assert report.errors == []
    assert [r.id for r in await store.find(FileKind.BLOB)] == [present.id]
    assert await store.find_by_id(link.id) is not None


async def test_record_sweep_completes_despite_delete_failure(
    reconciler: BlobReconciler, store: FileRecordStore, make_record, monkeypatch
) -> None:
    # Ids are captured up front: the rollback after the failure expires loaded rows
    ids = [(await make_record(stored_path=f"gone-{i}.bin")).id for i in range(3)]
    bad_id = ids[1]
    real_delete = store.delete_by_id

    async def flaky_delete(record_id):
        if record_id == bad_id:
            raise RuntimeError("simulated store error")
        return await real_delete(record_id)

    monkeypatch.setattr(store, "delete_by_id", flaky_delete)

    report = await reconciler.sweep_record_orphans()

    assert report.removed_count == 2
    assert len(report.errors) == 1
    assert "simulated store error" in report.errors[0]
    assert [r.id for r in await store.find(FileKind.BLOB)] == [bad_id]


async def test_directory_sweep_unlinks_orphan_symlink_not_its_target(
    reconciler: BlobReconciler, make_record, write_blob, upload_dir: Path
) -> None:
    target = write_blob("keep.bin", b"referenced")
    await make_record(stored_path="keep.bin")
    (upload_dir / "alias.bin").symlink_to(target)

    assert await reconciler.sweep_directory_orphans() == 1

    assert target.read_bytes() == b"referenced"
    assert not (upload_dir / "alias.bin").is_symlink()


async def test_directory_sweep_keeps_referenced_symlink(
    reconciler: BlobReconciler, make_record, write_blob, upload_dir: Path
) -> None:
    target = write_blob("real.bin")
    (upload_dir / "alias.bin").symlink_to(target)
    await make_record(stored_path="alias.bin")

    # real.bin itself is unreferenced and goes; the referenced link stays
    assert await reconciler.sweep_directory_orphans() == 1
    assert (upload_dir / "alias.bin").is_symlink()
    assert not target.exists()


async def test_directory_sweep_leaves_symlinked_outside_file_alone(
    reconciler: BlobReconciler, upload_dir: Path, tmp_path: Path
) -> None:
    outside = tmp_path / "outside.txt"
    outside.write_text("not ours")
    (upload_dir / "escape.bin").symlink_to(outside)

    assert await reconciler.sweep_directory_orphans() == 1

    assert outside.read_text() == "not ours"
    assert not (upload_dir / "escape.bin").is_symlink()
