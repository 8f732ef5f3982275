import threading

from PIL import Image

from assetflow.core.cache import CacheStore
from assetflow.core.dto import AssetRef, BinaryPayload, DominantColor, NEUTRAL_GRAY
from assetflow.media import color as color_module
from assetflow.media.color import DominantColorExtractor, derive_style

from conftest import encode, noisy_image, solid_image


def test_style_for_bright_color_uses_dark_text():
    style = derive_style(DominantColor(240, 230, 200))

    assert style.text_color == "rgb(2, 6, 23)"
    assert style.border_color == "rgba(2, 6, 23, 0.35)"
    assert style.title_background == "rgba(240, 230, 200, 0.85)"
    assert style.description_background == "rgba(190, 180, 150, 0.85)"


def test_style_for_dark_color_uses_light_text():
    style = derive_style(DominantColor(20, 30, 40))

    assert style.text_color == "rgb(255, 255, 255)"
    assert style.description_background == "rgba(0, 0, 0, 0.85)"


def test_style_is_a_pure_function():
    assert derive_style(DominantColor(1, 2, 3)) == derive_style(DominantColor(1, 2, 3))


async def test_solid_image_gives_its_own_color():
    color = await DominantColorExtractor().extract(solid_image((12, 34, 56), (300, 300)))

    assert color == DominantColor(12, 34, 56)


async def test_missing_image_falls_back_to_gray():
    assert await DominantColorExtractor().extract(None) == NEUTRAL_GRAY


async def test_zero_sized_image_falls_back_to_gray():
    assert await DominantColorExtractor().extract(Image.new("RGB", (0, 0))) == NEUTRAL_GRAY


async def test_chunk_size_does_not_change_result():
    image = noisy_image(180, 150, seed=3)

    whole = await DominantColorExtractor(chunk_pixels=10_000_000).extract(image)
    chunked = await DominantColorExtractor(chunk_pixels=37).extract(image)

    assert whole == chunked


async def test_same_input_same_output():
    image = noisy_image(90, 60, seed=11)
    extractor = DominantColorExtractor()

    assert await extractor.extract(image) == await extractor.extract(image)


async def test_result_is_memoized_in_style_tier():
    cache = CacheStore()
    extractor = DominantColorExtractor(cache)
    asset = AssetRef("a1", "a1_thumbnail.png", signature="v1")

    first = await extractor.extract_for(asset, solid_image((100, 0, 0)))
    # a different image with the same signature is served from the cache
    second = await extractor.extract_for(asset, solid_image((0, 100, 0)))

    assert first is second
    assert cache.get_style("a1", "v1").color == DominantColor(100, 0, 0)


async def test_undecodable_payload_gets_gray_style():
    entry = await DominantColorExtractor().extract_for_payload(
        AssetRef("bad", "bad_thumbnail.jpg"), BinaryPayload(b"junk", "image/jpeg")
    )

    assert entry.color == NEUTRAL_GRAY


async def test_decode_and_downsample_run_off_the_event_loop(monkeypatch):
    loop_thread = threading.get_ident()
    seen = []
    real_decode = color_module.decode_image
    real_resize = Image.Image.resize

    def tracking_decode(payload):
        seen.append(("decode", threading.get_ident()))
        return real_decode(payload)

    def tracking_resize(self, *args, **kwargs):
        seen.append(("resize", threading.get_ident()))
        return real_resize(self, *args, **kwargs)

    monkeypatch.setattr(color_module, "decode_image", tracking_decode)
    monkeypatch.setattr(Image.Image, "resize", tracking_resize)
    payload = BinaryPayload(encode(solid_image((12, 34, 56), (900, 600)), "PNG"), "image/png")

    entry = await DominantColorExtractor().extract_for_payload(AssetRef("big", "big.png"), payload)

    assert entry.color == DominantColor(12, 34, 56)
    assert {step for step, _ in seen} == {"decode", "resize"}
    assert all(thread != loop_thread for _, thread in seen)
