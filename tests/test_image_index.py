import random

import pytest

from vecinito.image_index import ImageIndex, Size, detect_size, parse_size


def test_list_images_by_size_only_returns_that_folder(image_root):
    index = ImageIndex(image_root, "/imagenes")

    images = index.list_images("productos", Size.SMALL)

    assert images == [
        "/imagenes/productos/pequeño/a.jpg",
        "/imagenes/productos/pequeño/b.png",
    ]


def test_list_images_filters_extensions_case_insensitively(image_root):
    index = ImageIndex(image_root, "/imagenes")

    assert index.list_images("productos", Size.MEDIUM) == ["/imagenes/productos/mediano/c.jpeg"]
    assert index.list_images("productos", Size.LARGE) == ["/imagenes/productos/grande/e.GIF"]


def test_list_images_without_size_combines_size_folders_in_order(image_root):
    index = ImageIndex(image_root, "/imagenes")

    images = index.list_images("productos")

    assert [image.split("/")[3] for image in images] == ["pequeño", "pequeño", "mediano", "grande"]


def test_missing_directories_yield_no_images(tmp_path):
    index = ImageIndex(tmp_path / "nowhere", "/imagenes")

    assert index.list_images("productos") == []
    assert index.list_images("productos", Size.SMALL) == []
    assert index.walk_images("productos") == []


def test_walk_images_recurses_into_subfolders(image_root):
    (image_root / "productos" / "extra.webp").write_bytes(b"img")
    index = ImageIndex(image_root, "/imagenes")

    images = index.walk_images("productos")

    assert "/imagenes/productos/extra.webp" in images
    assert "/imagenes/productos/grande/e.GIF" in images
    assert len(images) == 5


@pytest.mark.parametrize(
    "value, expected",
    [
        ("pequeño", Size.SMALL),
        ("pequeno", Size.SMALL),
        ("PEQUEÑO", Size.SMALL),
        ("small", Size.SMALL),
        ("mediano", Size.MEDIUM),
        ("medium", Size.MEDIUM),
        ("grande", Size.LARGE),
        ("large", Size.LARGE),
        ("enorme", None),
        ("", None),
    ],
)
def test_parse_size_aliases(value, expected):
    assert parse_size(value) is expected


def test_detect_size_finds_keyword_inside_prompt():
    assert detect_size("Quiero ver los kits tamaño mediano por favor") is Size.MEDIUM
    assert detect_size("un botiquin pequeno") is Size.SMALL
    assert detect_size("muéstrame los kits") is None


def _pool_index(tmp_path, size=5):
    root = tmp_path / "imagenes"
    for number in range(size):
        folder = root / "productos" / ("grande" if number % 2 else "mediano")
        folder.mkdir(parents=True, exist_ok=True)
        (folder / f"kit{number}.jpg").write_bytes(b"img")
    return ImageIndex(root, "/imagenes")


def test_pick_random_images_never_repeats_before_pool_is_exhausted(tmp_path):
    index = _pool_index(tmp_path)
    shown = set()
    rng = random.Random(7)

    first = index.pick_random_images(shown, "productos", 3, rng=rng)
    second = index.pick_random_images(shown, "productos", 3, rng=rng)

    assert len(set(first)) == 3
    # The two images left over from the first cycle come first.
    assert len(set(first + second[:2])) == 5
    # The third image opens a new cycle, so it repeats one seen before.
    assert second[2] in first
    assert shown == {second[2]}


def test_pick_random_images_leftovers_can_return_in_the_next_cycle(tmp_path):
    index = _pool_index(tmp_path)
    shown = set()
    rng = random.Random(11)

    index.pick_random_images(shown, "productos", 3, rng=rng)
    second = index.pick_random_images(shown, "productos", 3, rng=rng)
    third = index.pick_random_images(shown, "productos", 3, rng=rng)

    # Only the fresh pick of the second call counts as seen in the new cycle.
    assert second[2] not in third
    assert set(third) & set(second[:2])


def test_pick_random_images_repeated_cycles_cover_the_pool(tmp_path):
    index = _pool_index(tmp_path)
    shown = set()
    rng = random.Random(3)
    seen_order = []

    for _ in range(5):
        seen_order.extend(index.pick_random_images(shown, "productos", 3, rng=rng))

    # 15 picks over a pool of 5: each consecutive block of 5 is a full cycle.
    for start in range(0, 15, 5):
        assert len(set(seen_order[start:start + 5])) == 5


def test_pick_random_images_caps_count_and_handles_empty_pool(tmp_path):
    index = _pool_index(tmp_path, size=2)
    shown = set()

    picked = index.pick_random_images(shown, "productos", 10, rng=random.Random(1))

    assert len(picked) == 2
    assert len(set(picked)) == 2
    assert index.pick_random_images(set(), "vacio", 3) == []
    assert index.pick_random_images(set(), "productos", 0) == []
