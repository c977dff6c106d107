from __future__ import annotations

from stylemix.services.upload_intake import PREVIEW_PREFIX, PreviewStore, UploadIntake


def _intake():
    return UploadIntake(clock=lambda: 1700000000.25)


def test_add_items_keeps_input_order_and_creates_previews(make_upload):
    intake = _intake()
    added = intake.add_items([make_upload("dress.png"), make_upload("bag.jpg", content_type="image/jpeg")])

    assert [item.filename for item in intake.items] == ["dress.png", "bag.jpg"]
    assert [item.item_id for item in added] == ["dress.png-1700000000250", "bag.jpg-1700000000250"]
    assert all(item.preview.startswith(PREVIEW_PREFIX) for item in added)
    assert len(intake.previews) == 2


def test_add_items_appends_to_existing_list(make_upload):
    intake = _intake()
    intake.add_items([make_upload("dress.png")])
    intake.add_items([make_upload("shoes.png")])
    assert [item.filename for item in intake.items] == ["dress.png", "shoes.png"]


def test_add_items_does_not_reject_unknown_types(make_upload):
    intake = _intake()
    intake.add_items([make_upload("notes.txt", data=b"hello", content_type="text/plain")])
    assert len(intake.items) == 1


def test_same_name_same_millisecond_gets_distinct_ids(make_upload):
    intake = _intake()
    intake.add_items([make_upload("dress.png"), make_upload("dress.png")])
    intake.add_items([make_upload("dress.png")])
    ids = [item.item_id for item in intake.items]
    assert ids == ["dress.png-1700000000250", "dress.png-1700000000250-2", "dress.png-1700000000250-3"]


def test_remove_drops_exactly_one_item_and_releases_preview(make_upload):
    intake = _intake()
    first, second = intake.add_items([make_upload("dress.png"), make_upload("shoes.png")])

    intake.remove(first.item_id)

    assert intake.items == (second,)
    assert first.preview not in intake.previews
    assert second.preview in intake.previews


def test_remove_unknown_id_is_a_no_op(make_upload):
    intake = _intake()
    intake.add_items([make_upload("dress.png")])
    intake.remove("missing")
    assert len(intake.items) == 1
    assert len(intake.previews) == 1


def test_set_single_reference_uses_first_file_only(make_upload):
    intake = _intake()
    ref = intake.set_single_reference([make_upload("me.png"), make_upload("other.png")])
    assert ref is intake.reference
    assert ref.filename == "me.png"
    assert len(intake.previews) == 1


def test_set_single_reference_replaces_and_releases_old_preview(make_upload):
    intake = _intake()
    old = intake.set_single_reference([make_upload("me.png")])
    new = intake.set_single_reference([make_upload("me-again.png")])
    assert intake.reference is new
    assert old.preview not in intake.previews
    assert new.preview in intake.previews


def test_set_single_reference_with_no_files_keeps_current(make_upload):
    intake = _intake()
    ref = intake.set_single_reference([make_upload("me.png")])
    assert intake.set_single_reference([]) is None
    assert intake.reference is ref


def test_clear_releases_everything(make_upload):
    intake = _intake()
    intake.add_items([make_upload("dress.png"), make_upload("shoes.png")])
    intake.set_single_reference([make_upload("me.png")])
    intake.clear()
    assert intake.items == ()
    assert intake.reference is None
    assert len(intake.previews) == 0


def test_preview_resolves_until_released(make_upload):
    store = PreviewStore()
    handle = store.create(make_upload("dress.png", data=b"pixels"))
    token = handle[len(PREVIEW_PREFIX):]

    assert store.resolve(handle).data == b"pixels"
    assert store.resolve(token).media_type == "image/png"

    store.release(handle)
    assert store.resolve(handle) is None


def test_preview_reads_full_upload_while_another_reader_holds_the_cursor(make_upload):
    upload = make_upload("dress.png", data=b"pixels")
    store = PreviewStore()
    handle = store.create(upload)
    upload.stream.read(3)

    assert store.resolve(handle).data == b"pixels"
    assert upload.stream.tell() == 3
