# SPDX-License-Identifier: MIT
"""Tests for image reuse, propagation and reference-counted deletion."""

import pytest

from equipment_images.acquisition.equivalence import EquivalenceCache
from equipment_images.acquisition.errors import InvalidImageError
from equipment_images.config import ImageSettings
from tests.fakes import FakeAcquirer

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2048
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 2048


@pytest.fixture
def cache(fake_acquirer, image_settings):
    return EquivalenceCache(acquirer=fake_acquirer, image_settings=image_settings)


def _store_file(cache: EquivalenceCache, name: str) -> str:
    """Put a file on disk under the upload dir and return its image path."""
    cache.output_dir.mkdir(parents=True, exist_ok=True)
    (cache.output_dir / name).write_bytes(JPEG_BYTES)
    return cache.relative_path(name)


class TestReuse:

    def test_equivalent_image_reused_without_acquiring(self, cache, db_session, make_equipment, fake_acquirer):
        make_equipment(image_path="equipment/existing.jpg")
        target = make_equipment()

        outcome = cache.fetch_for(db_session, target)

        assert outcome.success
        assert outcome.reused
        assert outcome.image_path == "equipment/existing.jpg"
        assert target.image_path == "equipment/existing.jpg"
        assert fake_acquirer.requests == []

    def test_other_models_are_not_equivalent(self, cache, db_session, make_equipment):
        make_equipment(model="Carbonite Ultra", image_path="equipment/ultra.jpg")
        make_equipment(manufacturer="Blackmagic Design", image_path="equipment/bmd.jpg")
        target = make_equipment()

        assert cache.find_equivalent_image(db_session, target) is None

    def test_inactive_records_are_not_equivalent(self, cache, db_session, make_equipment):
        make_equipment(image_path="equipment/retired.jpg", is_active=False)
        target = make_equipment()

        assert cache.find_equivalent_image(db_session, target) is None

    def test_own_image_is_not_an_equivalent(self, cache, db_session, make_equipment):
        target = make_equipment(image_path="equipment/mine.jpg")
        assert cache.find_equivalent_image(db_session, target) is None

    @pytest.mark.parametrize("manufacturer,model", [(None, "Carbonite"), ("Ross Video", None), ("Ross Video", "")])
    def test_incomplete_identity_never_reuses(self, cache, db_session, make_equipment, fake_acquirer,
                                              manufacturer, model):
        make_equipment(manufacturer=manufacturer, model=model, image_path="equipment/other.jpg")
        target = make_equipment(manufacturer=manufacturer, model=model)

        outcome = cache.fetch_for(db_session, target)

        assert outcome.success
        assert not outcome.reused
        assert outcome.propagated == 0
        assert len(fake_acquirer.requests) == 1


class TestAcquireAndPropagate:

    def test_acquired_image_fills_the_group(self, cache, db_session, make_equipment, fake_acquirer):
        target = make_equipment(name="Carbonite Black")
        sibling_a = make_equipment()
        sibling_b = make_equipment()
        other_model = make_equipment(model="Acuity")

        outcome = cache.fetch_for(db_session, target)

        assert outcome.success
        assert outcome.image_path.startswith("equipment/")
        assert outcome.propagated == 2
        assert sibling_a.image_path == sibling_b.image_path == target.image_path
        assert other_model.image_path is None
        assert cache.resolve_path(outcome.image_path).exists()

        request = fake_acquirer.requests[0]
        assert request.product_name == "Carbonite Black"
        assert request.output_dir == cache.output_dir

    def test_propagation_never_overwrites(self, cache, db_session, make_equipment):
        manual = make_equipment(image_path="equipment/manual.png")
        empty = make_equipment()
        inactive = make_equipment(is_active=False)

        updated = cache.propagate(db_session, "Ross Video", "Carbonite", "equipment/new.jpg")

        assert updated == 1
        assert manual.image_path == "equipment/manual.png"
        assert empty.image_path == "equipment/new.jpg"
        assert inactive.image_path is None

    def test_propagation_excludes_given_record(self, cache, db_session, make_equipment):
        skipped = make_equipment()
        filled = make_equipment()

        updated = cache.propagate(
            db_session, "Ross Video", "Carbonite", "equipment/new.jpg", exclude_id=skipped.id
        )

        assert updated == 1
        assert skipped.image_path is None
        assert filled.image_path == "equipment/new.jpg"

    def test_failed_acquisition_leaves_record_untouched(self, db_session, make_equipment, image_settings):
        cache = EquivalenceCache(acquirer=FakeAcquirer(fail_models={"Carbonite"}), image_settings=image_settings)
        target = make_equipment()

        outcome = cache.fetch_for(db_session, target)

        assert not outcome.success
        assert outcome.error == "Could not find confident product page URL"
        assert target.image_path is None

    def test_outcome_serializes(self, cache, db_session, make_equipment):
        outcome = cache.fetch_for(db_session, make_equipment())
        data = outcome.to_dict()

        assert data["method"] == "direct_download"
        assert data["source_url"].startswith("https://example.com/")


class TestReferenceCounting:

    def test_shared_file_survives_until_last_reference(self, cache, db_session, make_equipment):
        image_path = _store_file(cache, "shared.jpg")
        first = make_equipment(image_path=image_path)
        second = make_equipment(image_path=image_path)
        filepath = cache.resolve_path(image_path)

        assert cache.delete_image(db_session, first) is False
        assert first.image_path is None
        assert filepath.exists()

        assert cache.delete_image(db_session, second) is True
        assert not filepath.exists()

    def test_inactive_references_do_not_count(self, cache, db_session, make_equipment):
        image_path = _store_file(cache, "retired.jpg")
        make_equipment(image_path=image_path, is_active=False)
        current = make_equipment(image_path=image_path)

        assert cache.count_references(db_session, image_path) == 1
        assert cache.delete_image(db_session, current) is True

    def test_delete_without_image(self, cache, db_session, make_equipment):
        assert cache.delete_image(db_session, make_equipment()) is False

    def test_missing_file_is_not_an_error(self, cache, db_session, make_equipment):
        record = make_equipment(image_path="equipment/gone.jpg")
        assert cache.delete_image(db_session, record) is False
        assert record.image_path is None

    def test_refetch_releases_exclusive_previous_file(self, cache, db_session, make_equipment):
        old_path = _store_file(cache, "old.jpg")
        record = make_equipment(model="Acuity", image_path=old_path)

        outcome = cache.fetch_for(db_session, record)

        assert outcome.success
        assert record.image_path != old_path
        assert not cache.resolve_path(old_path).exists()

    def test_reuse_releases_exclusive_previous_file(self, cache, db_session, make_equipment, fake_acquirer):
        shared = _store_file(cache, "shared.jpg")
        own = _store_file(cache, "own.jpg")
        make_equipment(image_path=shared)
        record = make_equipment(image_path=own)

        outcome = cache.fetch_for(db_session, record)

        assert outcome.reused
        assert record.image_path == shared
        assert cache.count_references(db_session, own) == 0
        assert not cache.resolve_path(own).exists()
        assert cache.resolve_path(shared).exists()
        assert fake_acquirer.requests == []

    def test_reuse_keeps_previous_file_still_referenced(self, cache, db_session, make_equipment):
        shared = _store_file(cache, "shared.jpg")
        own = _store_file(cache, "own.jpg")
        make_equipment(image_path=shared)
        record = make_equipment(image_path=own)
        make_equipment(model="Acuity", image_path=own)

        cache.fetch_for(db_session, record)

        assert cache.resolve_path(own).exists()


class TestManualUpload:

    def test_store_png(self, cache, db_session, make_equipment):
        record = make_equipment()

        image_path = cache.store_manual_image(db_session, record, PNG_BYTES, "carbonite.png")

        assert image_path.startswith("equipment/")
        assert image_path.endswith(".png")
        assert "carbonite" not in image_path
        assert record.image_path == image_path
        assert cache.resolve_path(image_path).read_bytes() == PNG_BYTES

    def test_extension_follows_content(self, cache, db_session, make_equipment):
        image_path = cache.store_manual_image(db_session, make_equipment(), JPEG_BYTES, "photo.jpeg")
        assert image_path.endswith(".jpg")

    def test_replacing_keeps_shared_previous_file(self, cache, db_session, make_equipment):
        shared = _store_file(cache, "shared.jpg")
        record = make_equipment(image_path=shared)
        make_equipment(image_path=shared)

        cache.store_manual_image(db_session, record, PNG_BYTES, "new.png")

        assert cache.resolve_path(shared).exists()

    def test_replacing_deletes_exclusive_previous_file(self, cache, db_session, make_equipment):
        previous = _store_file(cache, "mine.jpg")
        record = make_equipment(image_path=previous)

        cache.store_manual_image(db_session, record, PNG_BYTES, "new.png")

        assert not cache.resolve_path(previous).exists()

    @pytest.mark.parametrize("content,filename", [
        (b"", "empty.png"),
        (b"<html>not an image</html>", "fake.png"),
        (PNG_BYTES, "image.svg"),
        (PNG_BYTES, ""),
    ])
    def test_invalid_uploads_rejected(self, cache, db_session, make_equipment, content, filename):
        record = make_equipment()

        with pytest.raises(InvalidImageError):
            cache.store_manual_image(db_session, record, content, filename)

        assert record.image_path is None

    def test_oversized_upload_rejected(self, db_session, make_equipment, tmp_path):
        cache = EquivalenceCache(
            acquirer=FakeAcquirer(),
            image_settings=ImageSettings(upload_root=tmp_path / "uploads", max_upload_bytes=1024),
        )

        with pytest.raises(InvalidImageError, match="too large"):
            cache.store_manual_image(db_session, make_equipment(), PNG_BYTES, "big.png")


class TestPaths:

    def test_relative_path(self, cache):
        assert cache.relative_path("abc.jpg") == "equipment/abc.jpg"

    @pytest.mark.parametrize("image_path", ["../secrets.txt", "equipment/../../etc/passwd", "/etc/passwd"])
    def test_resolve_refuses_escape(self, cache, image_path):
        with pytest.raises(ValueError):
            cache.resolve_path(image_path)

    def test_release_refuses_escape(self, cache, db_session, tmp_path):
        outside = tmp_path / "outside.jpg"
        outside.write_bytes(JPEG_BYTES)

        assert cache.release(db_session, "../outside.jpg") is False
        assert outside.exists()
