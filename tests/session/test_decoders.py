import pytest

from dino_retrieval.session.decoders import (
    decode_caption,
    decode_gallery,
    decode_image,
    decode_metrics,
    image_location,
)
from dino_retrieval.session.models import Caption, Metrics, RecallAtK, RetrievalImage

SUMMARY = """Loaded Cars196 with DINOv3 base
Precision@1: 91.20%
MAP@R: 40.10%
R@1: 91.20%
R@5: 96.75%
R@10: 98.01%
R@100: 99.90%
Total embeddings: 16185
Embedding dimension: 768
"""


def test_decode_metrics_reads_every_field() -> None:
    metrics = decode_metrics(SUMMARY)

    assert metrics == Metrics(
        precision_at_1=91.2,
        map_r=40.1,
        recall=RecallAtK(r1=91.2, r5=96.75, r10=98.01, r100=99.9),
        embedding_count="16185",
        dimension=768,
    )


def test_decode_metrics_defaults_missing_fields() -> None:
    metrics = decode_metrics("Precision@1: 12.5%\nsomething else entirely")

    assert metrics.precision_at_1 == 12.5
    assert metrics.map_r == 0.0
    assert metrics.recall == RecallAtK()
    assert metrics.embedding_count == "0"
    assert metrics.dimension == 0


@pytest.mark.parametrize("raw", [None, "", "no numbers here"])
def test_decode_metrics_empty_input_yields_zeroes(raw) -> None:
    assert decode_metrics(raw) == Metrics()


def test_decode_metrics_tolerates_malformed_numbers() -> None:
    metrics = decode_metrics("Precision@1: 1.2.3%\nMAP@R: 5%")

    assert metrics.precision_at_1 == 0.0
    assert metrics.map_r == 5.0


def test_decode_metrics_recall_at_one_does_not_read_r_at_ten() -> None:
    metrics = decode_metrics("R@10: 80.00%\nR@100: 99.00%")

    assert metrics.recall.r1 == 0.0
    assert metrics.recall.r10 == 80.0
    assert metrics.recall.r100 == 99.0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Class: Sedan\nSim: 0.912", Caption("Sedan", "0.912")),
        ("Label: Sparrow\nSim: 0.5", Caption("Sparrow", "0.5")),
        ("Coupe", Caption("Coupe", "0.000")),
        ("Class: \nSim: ", Caption("Unknown", "0.000")),
        ("", Caption("Unknown", "0.000")),
        (None, Caption("Unknown", "0.000")),
    ],
)
def test_decode_caption(raw, expected) -> None:
    assert decode_caption(raw) == expected


@pytest.mark.parametrize(
    "item, expected",
    [
        ({"image": {"url": "https://x/a.png", "path": "/tmp/a.png"}}, "https://x/a.png"),
        ({"image": {"url": None, "path": "/tmp/a.png"}}, "/tmp/a.png"),
        ({"image": "/tmp/b.png"}, "/tmp/b.png"),
        ({"url": "https://x/c.png"}, "https://x/c.png"),
        ({"path": "/tmp/d.png"}, "/tmp/d.png"),
        ("/tmp/e.png", "/tmp/e.png"),
        ({"caption": "orphan"}, ""),
        (42, ""),
    ],
)
def test_image_location_prefers_url_then_path(item, expected) -> None:
    assert image_location(item) == expected


def test_decode_image_handles_pairs_and_mappings() -> None:
    assert decode_image(("/tmp/a.png", "Class: A\nSim: 0.9")) == RetrievalImage(
        "/tmp/a.png", "Class: A\nSim: 0.9"
    )
    assert decode_image({"image": {"path": "/tmp/b.png"}, "caption": None}) == RetrievalImage(
        "/tmp/b.png"
    )
    assert decode_image([]) is None
    assert decode_image({"caption": "no image"}) is None


def test_decode_gallery_skips_unusable_entries() -> None:
    payload = [
        {"image": {"path": "/tmp/1.png"}, "caption": "Class: A\nSim: 0.9"},
        {"caption": "missing image"},
        ["/tmp/2.png", "Class: B\nSim: 0.8"],
    ]

    images = decode_gallery(payload)

    assert [image.url for image in images] == ["/tmp/1.png", "/tmp/2.png"]
    assert images[1].caption == "Class: B\nSim: 0.8"


@pytest.mark.parametrize("payload", [None, [], "oops", {"image": "/tmp/a.png"}])
def test_decode_gallery_rejects_non_sequences(payload) -> None:
    assert decode_gallery(payload) == ()


def test_decode_metrics_three_decimal_percentages() -> None:
    metrics = decode_metrics("Precision@1: 87.350%\nR@1: 91.200%")

    assert metrics.precision_at_1 == 87.35
    assert metrics.recall.r1 == 91.2
