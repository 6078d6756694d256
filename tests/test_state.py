import numpy as np
import pytest

from sig_extract.state import (
    FULL_IMAGE_REGION_ID, OutputSpec, ProcessedSignature, Region, SignatureSet, clamp_sensitivity
)


def make_signature(sig_id: str, annotation=None) -> ProcessedSignature:
    bitmap = np.zeros((20, 40, 4), dtype=np.uint8)
    return ProcessedSignature(id=sig_id, raw_crop=bitmap.copy(), processed_bitmap=bitmap, annotation=annotation)


@pytest.mark.parametrize("value, expected", [
    (0, 5), (4.6, 5), (5, 5), (17.5, 18), (22.4, 22), (40, 40), (41, 40), (1000, 40),
])
def test_clamp_sensitivity(value, expected):
    assert clamp_sensitivity(value) == expected


@pytest.mark.parametrize("kwargs", [
    {"width": 0},
    {"height": -1},
    {"background": "black"},
])
def test_output_spec_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        OutputSpec(**kwargs)


def test_output_spec_defaults():
    spec = OutputSpec()
    assert (spec.width, spec.height, spec.background) == (452, 224, "transparent")


def test_region_geometry():
    region = Region(id="r", x=10, y=20, width=100, height=50, rotation_degrees=30)
    assert region.center == (60.0, 45.0)
    assert region.is_valid
    assert not Region(id="r", x=0, y=0, width=0, height=5).is_valid

    full = Region.full_image(640, 480)
    assert full.id == FULL_IMAGE_REGION_ID
    assert (full.x, full.y, full.width, full.height, full.rotation_degrees) == (0, 0, 640, 480, 0.0)


def test_processed_signature_is_read_only():
    sig = make_signature("a")
    assert (sig.width, sig.height) == (40, 20)
    with pytest.raises(ValueError):
        sig.raw_crop[0, 0, 0] = 1
    with pytest.raises(ValueError):
        sig.processed_bitmap[0, 0, 0] = 1


def test_signature_set_keeps_annotations_by_id():
    signatures = SignatureSet()
    signatures.replace([make_signature("a"), make_signature("b")])
    assert signatures.annotate("a", "witness")

    signatures.replace([make_signature("b"), make_signature("a"), make_signature("c")])

    assert [sig.id for sig in signatures] == ["b", "a", "c"]
    assert signatures.get("a").annotation == "witness"
    assert signatures.get("b").annotation is None
    assert signatures.get("missing") is None


def test_signature_set_drops_annotations_of_removed_ids():
    signatures = SignatureSet()
    signatures.replace([make_signature("a")])
    signatures.annotate("a", "note")
    signatures.replace([make_signature("b")])
    signatures.replace([make_signature("a")])
    assert signatures.get("a").annotation is None


def test_annotate():
    signatures = SignatureSet()
    signatures.replace([make_signature("a")])
    assert not signatures.annotate("zzz", "note")
    assert signatures.annotate("a", "")
    assert signatures.get("a").annotation is None
    assert len(signatures) == 1


def test_replace_without_keeping_annotations():
    signatures = SignatureSet()
    signatures.replace([make_signature("a")])
    signatures.annotate("a", "note")
    signatures.replace([make_signature("a")], keep_annotations=False)
    assert signatures.get("a").annotation is None
