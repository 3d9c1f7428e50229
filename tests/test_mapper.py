"""
Unit tests for the Flickr payload mapper and entity documents.
"""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from syncer.mapper import (
    map_exif,
    map_owner,
    map_photo,
    map_record,
    map_tags,
    prune_absent,
)
from syncer.models import ExifInfo, PhotoInfo, Tag

from conftest import exif_payload, info_payload, listed_record


# ---------------------------------------------------------------------------
# map_photo
# ---------------------------------------------------------------------------


class TestMapPhoto:
    def test_getinfo_payload(self):
        photo = map_photo(info_payload("5301"))
        assert photo.id == "5301"
        assert photo.server == "65535"
        assert photo.secret == "abc123"
        assert photo.owner_id == "12345678@N00"
        assert photo.info.title == "Sunset over Batumi"
        assert photo.info.description == "Golden hour on the Black Sea."
        assert photo.info.page_url == "https://www.flickr.com/photos/alice/5301/"
        assert photo.info.original_format == "jpg"
        assert photo.info.date.taken == "2024-05-01 19:42:10"
        assert photo.info.date.uploaded == "1714550000"
        assert photo.info.date.updated == "1714560000"
        assert photo.info.count.views == 42
        assert photo.info.count.comments == 3
        assert photo.info.location.latitude == pytest.approx(41.6168)
        assert photo.info.location.locality == "Batumi"
        assert photo.is_public

    def test_listing_record(self):
        photo = map_photo(listed_record("77"))
        assert photo.id == "77"
        assert photo.owner_id == "12345678@N00"
        assert photo.info.date.updated == "1714560000"
        assert photo.info.description is None

    @pytest.mark.parametrize("flag", [0, "0", False])
    def test_private_flags(self, flag):
        assert not map_photo(info_payload(ispublic=flag)).is_public

    @pytest.mark.parametrize("flag", [1, "1", True])
    def test_public_flags(self, flag):
        assert map_photo(info_payload(ispublic=flag)).is_public

    def test_missing_visibility_defaults_to_public(self):
        payload = info_payload()
        del payload["visibility"]
        assert map_photo(payload).is_public

    def test_listing_private_flag(self):
        assert not map_photo(listed_record(ispublic=0)).is_public

    def test_non_numeric_counts_are_absent_not_zero(self):
        payload = info_payload()
        payload["views"] = "lots"
        payload["comments"] = {"_content": ""}
        photo = map_photo(payload)
        assert photo.info.count.views is None
        assert photo.info.count.comments is None

    def test_nan_coordinates_are_absent(self):
        payload = info_payload()
        payload["location"]["latitude"] = "nan"
        assert map_photo(payload).info.location.latitude is None

    def test_empty_description_is_absent(self):
        photo = map_photo(info_payload(description=""))
        assert photo.info.description is None

    def test_missing_title_is_empty_string(self):
        payload = info_payload()
        del payload["title"]
        assert map_photo(payload).info.title == ""


# ---------------------------------------------------------------------------
# Tags, owner, EXIF
# ---------------------------------------------------------------------------


class TestMapTags:
    def test_tags_keep_upstream_order(self):
        tags = map_tags(info_payload("5301", tags=("sunset", "sea", "batumi")))
        assert [t.tag_name for t in tags] == ["sunset", "sea", "batumi"]
        assert tags[0] == Tag(
            photo_id="5301",
            tag_id="5301-sunset",
            tag_name="sunset",
            author_id="12345678@N00",
            author_name="alice",
            raw="Sunset",
        )

    def test_no_tags(self):
        assert map_tags(info_payload(tags=())) == []

    def test_listing_record_has_no_tags(self):
        assert map_tags(listed_record()) == []

    def test_tag_without_id_skipped(self):
        payload = info_payload()
        payload["tags"]["tag"].append({"_content": "orphan"})
        assert len(map_tags(payload)) == 2


class TestMapOwner:
    def test_owner(self):
        owner = map_owner(info_payload())
        assert owner.id == "12345678@N00"
        assert owner.username == "alice"
        assert owner.realname == "Alice Example"
        assert owner.location == "Tbilisi, Georgia"

    def test_slim_record_has_no_owner(self):
        assert map_owner(listed_record()) is None


class TestMapExif:
    def test_known_fields(self):
        exif = map_exif("5301", exif_payload())
        assert exif.photo_id == "5301"
        assert exif.make == "FUJIFILM"
        assert exif.model == "X-T4"
        assert exif.artist == "Alice"
        assert exif.exposure == "1/250"
        assert exif.aperture == "5.6"
        assert exif.focal_length == "23.0 mm"
        assert exif.iso == "160"

    def test_clean_values(self):
        exif = map_exif("5301", exif_payload())
        assert exif.clean.exposure == "0.004 sec (1/250)"
        assert exif.clean.aperture == "f/5.6"
        assert exif.clean.focal_length == "23 mm"
        assert exif.clean.exposure_compensation is None

    def test_unknown_tagspace_ignored(self):
        doc = map_exif("5301", exif_payload()).info_document()
        assert "XMPToolkit" not in str(doc)

    def test_same_tag_other_tagspace_ignored(self):
        payload = {"exif": [{"tagspace": "XMP-tiff", "tag": "Make", "raw": {"_content": "Other"}}]}
        assert map_exif("1", payload).make is None

    def test_empty_payload(self):
        assert map_exif("1", {}) == ExifInfo(photo_id="1")
        assert map_exif("1", None) == ExifInfo(photo_id="1")


class TestMapRecord:
    def test_full_record(self):
        record = map_record(info_payload("5301"), exif_payload("5301"))
        assert record.photo.id == "5301"
        assert len(record.tags) == 2
        assert record.exif.make == "FUJIFILM"
        assert record.owner.username == "alice"

    def test_without_exif(self):
        assert map_record(info_payload()).exif is None


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocuments:
    def test_prune_absent_drops_none_and_empty(self):
        assert prune_absent({"a": None, "b": {"c": None}, "d": 0, "e": ""}) == {"d": 0, "e": ""}

    def test_prune_absent_keeps_list_positions(self):
        assert prune_absent({"xs": [{"a": None}, 1]}) == {"xs": [{}, 1]}

    def test_photo_document_omits_absent_fields(self):
        payload = listed_record()
        doc = map_photo(payload).info_document()
        assert "description" not in doc
        assert "count" not in doc
        assert "location" not in doc
        assert doc["permission"] == {"is_public": True}

    def test_photo_document_roundtrip(self):
        photo = map_photo(info_payload())
        assert PhotoInfo.from_document(photo.info_document()) == photo.info

    def test_exif_document_roundtrip(self):
        exif = map_exif("5301", exif_payload())
        assert ExifInfo.from_document("5301", exif.info_document()) == exif

    def test_documents_tolerate_newer_fields(self):
        doc = map_photo(info_payload()).info_document()
        doc["favorites"] = 9
        doc["date"]["posted_by_app"] = "uploadr"
        info = PhotoInfo.from_document(doc)
        assert info.title == "Sunset over Batumi"

    def test_tag_document_roundtrip(self):
        tag = map_tags(info_payload())[0]
        assert Tag.from_document(tag.photo_id, tag.tag_id, tag.info_document()) == tag


@given(
    views=st.one_of(st.none(), st.integers(min_value=0, max_value=10**9), st.text(max_size=8)),
    latitude=st.one_of(st.none(), st.floats(allow_infinity=False), st.text(max_size=8)),
)
def test_numeric_fields_are_number_or_absent(views, latitude):
    payload = info_payload()
    payload["views"] = views
    payload["location"]["latitude"] = latitude
    photo = map_photo(payload)
    assert photo.info.count.views is None or isinstance(photo.info.count.views, int)
    lat = photo.info.location.latitude
    assert lat is None or (isinstance(lat, float) and not math.isnan(lat))
