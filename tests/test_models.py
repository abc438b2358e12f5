"""Tests for media file data models."""

import pytest
from pydantic import ValidationError

from ripit.media.models import MediaFileData, MediaFileStatus, SourceFile, Track, UrlInfo

from conftest import make_file, make_source, make_track


class TestTrack:
    def test_wire_aliases(self):
        track = make_track("251", "webm", acodec="opus", vcodec="none", hasAudio=True)

        assert track.format_id == "251"
        assert track.has_audio is True
        data = track.to_dict()
        assert data["formatId"] == "251"
        assert data["hasAudio"] is True

    def test_unset_fields_not_serialized(self):
        data = make_track().to_dict()

        assert "vcodec" not in data
        assert "filesize" not in data

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            Track.model_validate({"formatId": "1", "ext": "mp4", "bogus": 1})

    def test_missing_e_data_type_normalized(self):
        track = make_track(eData={"language": "en"})

        assert track.e_data == {"__type": "none"}

    def test_codecs(self):
        assert make_track(vcodec="avc1", acodec="none").codecs == "avc1"
        assert make_track(vcodec="avc1", acodec="mp4a").codecs == "avc1+mp4a"
        assert make_track().codecs == "none"


class TestSourceFile:
    def test_chapters_parsed_from_extension(self):
        source = make_source(
            e_data={
                "__type": "youtube",
                "chapters": [
                    {"start_time": 0, "end_time": 10.5, "title": "Intro"},
                    {"title": "no start"},
                    {"start_time": 10.5, "title": "Main"},
                ],
            },
        )

        chapters = source.chapters

        assert [c.title for c in chapters] == ["Intro", "Main"]
        assert chapters[1].end_time is None

    def test_no_chapters(self):
        assert make_source().chapters == []
        assert make_source(e_data={"__type": "youtube", "chapters": "bad"}).chapters == []

    def test_required_fields(self):
        with pytest.raises(ValidationError):
            SourceFile.model_validate({"id": "x", "title": "t"})


class TestMediaFileData:
    def test_create(self):
        source = make_source()

        entry = MediaFileData.create(source, source.tracks[:1])

        assert entry.status is MediaFileStatus.ADDED
        assert entry.file_name == "Test Video"
        assert entry.version == "1"
        assert len(entry.track_ids) == 1
        assert entry.id

    def test_create_with_name(self):
        entry = make_file(name="Custom")

        assert entry.file_name == "Custom"

    def test_ids_are_unique(self):
        assert make_file().id != make_file().id

    def test_round_trip_through_wire_form(self, media_file):
        data = media_file.to_dict()

        assert data["status"] == "Added"
        assert data["trackIds"][0]["formatId"] == "137"
        assert data["source"]["webpageUrl"].endswith("abc123")
        assert MediaFileData.model_validate(data).to_dict() == data

    def test_invalid_status(self, media_file):
        data = media_file.to_dict()
        data["status"] = "Unknown"

        with pytest.raises(ValidationError):
            MediaFileData.model_validate(data)

    def test_mark_loaded(self, media_file):
        media_file.mark_loaded(1234)

        assert media_file.status is MediaFileStatus.LOADED
        assert media_file.size == 1234
        assert media_file.created is not None
        assert media_file.to_dict()["size"] == 1234


class TestUrlInfo:
    def test_serialized_form(self):
        info = UrlInfo(type="playlist", count=3, channelId="UC1")

        assert info.to_dict() == {"type": "playlist", "count": 3, "channelId": "UC1"}
