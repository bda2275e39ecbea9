import pytest

from mediaguard.core.errors import UnsupportedMedia
from mediaguard.models.fingerprint import MediaKind
from mediaguard.models.registry import MatchKind
from mediaguard.services.engine import FingerprintEngine
from mediaguard.services.submission import SubmissionStatus, media_kind_from_mime, submit_media


@pytest.mark.parametrize("content_type, expected", [
    ("video/mp4", MediaKind.VIDEO),
    ("video/quicktime", MediaKind.VIDEO),
    ("image/png", MediaKind.IMAGE),
    ("audio/mpeg", MediaKind.AUDIO),
    ("text/plain", MediaKind.OTHER),
    ("application/pdf", MediaKind.OTHER),
    (None, MediaKind.OTHER),
])
def test_media_kind_from_mime(content_type, expected):
    assert media_kind_from_mime(content_type) == expected


def test_media_kind_from_filename():
    assert media_kind_from_mime(None, "clip.mp4") == MediaKind.VIDEO
    assert media_kind_from_mime("", "photo.jpeg") == MediaKind.IMAGE


def test_original_then_exact_repost(registry, block_image, image_bytes):
    engine = FingerprintEngine()
    data = image_bytes(block_image(seed=7))

    first = submit_media(engine, registry, "alice", data, "image", "QmAlice")
    assert first.status == SubmissionStatus.NEW_ASSET_REGISTERED
    assert first.detection.kind == MatchKind.ORIGINAL
    assert first.record.owner == "alice"

    second = submit_media(engine, registry, "bob", data, "image", "QmBob")
    assert second.status == SubmissionStatus.REPOST_DETECTED
    assert second.record is None
    assert second.detection.kind == MatchKind.EXACT_DUPLICATE
    assert second.detection.owner == "alice"

    assert registry.records_by_owner("bob") == []
    assert registry.stats().total_registered == 1
    assert registry.stats().total_duplicates_detected == 1


def test_reencoded_copy_is_visual_match(registry, block_image, image_bytes):
    engine = FingerprintEngine()
    image = block_image(seed=8)
    submit_media(engine, registry, "alice", image_bytes(image, "PNG"), "image", "QmAlice")

    copy = submit_media(engine, registry, "bob", image_bytes(image, "BMP"), "image", "QmBob")
    assert copy.status == SubmissionStatus.REPOST_DETECTED
    assert copy.detection.kind == MatchKind.VISUAL_MATCH
    assert copy.detection.owner == "alice"


def test_reused_audio_is_audio_match(registry, melody, audio_bytes):
    engine = FingerprintEngine()
    samples = melody()
    submit_media(engine, registry, "alice", audio_bytes(samples, "WAV"), "audio", "QmAlice", ".wav")

    reuse = submit_media(engine, registry, "bob", audio_bytes(samples, "FLAC"), "audio", "QmBob",
                         ".flac")
    assert reuse.status == SubmissionStatus.REPOST_DETECTED
    assert reuse.detection.kind == MatchKind.AUDIO_MATCH
    assert reuse.detection.owner == "alice"


def test_text_posts_only_match_exactly(registry):
    engine = FingerprintEngine()
    submit_media(engine, registry, "alice", b"hello world", "other", "QmA")

    different = submit_media(engine, registry, "bob", b"hello world!", "other", "QmB")
    assert different.status == SubmissionStatus.NEW_ASSET_REGISTERED

    same = submit_media(engine, registry, "carol", b"hello world", "other", "QmC")
    assert same.detection.kind == MatchKind.EXACT_DUPLICATE
    assert same.detection.owner == "alice"


def test_undecodable_upload_is_not_registered(registry):
    with pytest.raises(UnsupportedMedia):
        submit_media(FingerprintEngine(), registry, "alice", b"garbage", "image", "QmA")
    assert registry.stats().total_registered == 0


def test_lost_registration_race_reports_repost(registry, make_fp):
    fp = make_fp("contested")

    class RacingEngine:
        def compute(self, data, kind, suffix=""):
            return fp

    class RaceRegistry:
        """Reports ORIGINAL once, as if another submission registered in between."""

        def __init__(self, inner):
            self.inner = inner
            self.calls = 0

        def detect(self, triple, actor=None):
            self.calls += 1
            if self.calls == 1:
                self.inner.register("alice", triple, "QmAlice")
                return self.inner._match(make_fp("unseen"))
            return self.inner.detect(triple, actor=actor)

        def register(self, owner, triple, locator):
            return self.inner.register(owner, triple, locator)

    result = submit_media(RacingEngine(), RaceRegistry(registry), "bob", b"x", "other", "QmBob")
    assert result.status == SubmissionStatus.REPOST_DETECTED
    assert result.detection.owner == "alice"
    assert registry.records_by_owner("bob") == []


def test_dispute_scenario(registry, block_image, image_bytes):
    engine = FingerprintEngine()
    result = submit_media(engine, registry, "alice", image_bytes(block_image(seed=9)), "image",
                          "QmAlice")

    registry.raise_dispute("carol", result.fingerprint.exact, "stolen content")
    assert registry.stats().total_disputes == 1
    assert registry.get_record(result.fingerprint.exact).disputed is True


def test_unknown_kind_is_unsupported(registry):
    with pytest.raises(UnsupportedMedia):
        submit_media(FingerprintEngine(), registry, "alice", b"x", "hologram", "QmA")
    assert registry.stats().total_registered == 0
