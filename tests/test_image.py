from fractions import Fraction

import numpy as np
import pytest

from w2xcore.image import (
    ImageJob,
    alpha_clean,
    alpha_make_border,
    bgr_to_yuv,
    is_one_color,
    pad_image,
    resize,
    yuv_to_bgr,
)
from w2xcore.imagefile import load_pixels, write_pixels
from w2xcore.modelinfo import FailedOpenInputFileError


def _image(shape, seed=0):
    return np.random.default_rng(seed).integers(0, 256, size=shape, dtype=np.uint8)


def _run(job, input_plane, net_offset=2, outer_padding=1, crop=4, scale=1):
    """Push the job through an identity network."""
    job.preprocess(input_plane, net_offset)
    pad = net_offset + outer_padding
    alpha = job.has_alpha
    padded, size = job.padded_rgb(net_offset, outer_padding, crop, crop, scale)
    job.set_reconstructed_rgb(padded[pad:, pad:], size, 1)
    if alpha:
        padded_a, size_a = job.padded_alpha(net_offset, outer_padding, crop, crop, scale)
        job.set_reconstructed_alpha(padded_a[pad:, pad:], size_a, 1)


def test_yuv_round_trip():
    img = np.random.default_rng(1).random((4, 5, 3)).astype(np.float32)
    back = yuv_to_bgr(bgr_to_yuv(img))
    assert np.allclose(back, img, atol=1e-3)


def test_yuv_of_gray_has_neutral_chroma():
    img = np.full((2, 2, 3), 0.2, dtype=np.float32)
    yuv = bgr_to_yuv(img)
    assert np.allclose(yuv[:, :, 0], 0.2, atol=1e-6)
    assert np.allclose(yuv[:, :, 1:], 0.5, atol=1e-6)


def test_bgr_to_yuv_needs_colour():
    with pytest.raises(ValueError):
        bgr_to_yuv(np.zeros((2, 2), dtype=np.float32))


def test_resize_nearest_integer_upscale_repeats():
    img = np.random.default_rng(2).random((3, 4)).astype(np.float32)
    out = resize(img, 8, 6, "nearest")
    assert np.array_equal(out, img.repeat(2, 0).repeat(2, 1))


def test_resize_area_halving_is_block_mean():
    img = np.random.default_rng(3).random((4, 4, 2))
    out = resize(img, 2, 2, "area")
    expected = img.reshape(2, 2, 2, 2, 2).mean(axis=(1, 3))
    assert np.allclose(out, expected)


@pytest.mark.parametrize("method", ["nearest", "cubic", "area"])
@pytest.mark.parametrize("size", [(7, 5), (2, 3)])
def test_resize_keeps_constant_image(method, size):
    img = np.full((4, 6, 3), 0.25, dtype=np.float32)
    out = resize(img, size[0], size[1], method)
    assert out.shape == (size[1], size[0], 3)
    assert np.allclose(out, 0.25, atol=1e-5)


def test_resize_same_size_is_copy():
    img = _image((3, 3, 3))
    out = resize(img, 3, 3, "cubic")
    assert np.array_equal(out, img)
    out[0, 0, 0] ^= 1
    assert not np.array_equal(out, img)


def test_resize_rejects_bad_arguments():
    img = np.zeros((2, 2), dtype=np.float32)
    with pytest.raises(ValueError):
        resize(img, 4, 4, "lanczos")
    with pytest.raises(ValueError):
        resize(img, 0, 4, "cubic")


def test_is_one_color():
    plane = np.full((3, 3), 0.3, dtype=np.float32)
    assert is_one_color(plane) is True
    plane[2, 1] = 0.4
    assert is_one_color(plane) is False
    assert is_one_color(np.zeros((0, 0), dtype=np.float32)) is True


def test_alpha_make_border_without_offset_clears_transparent():
    alpha = np.array([[0.0, 1.0], [0.5, 0.0]], dtype=np.float32)
    plane = np.full((2, 2), 0.7, dtype=np.float32)
    (out,) = alpha_make_border([plane], alpha, 0)
    assert np.allclose(out, np.where(alpha > 0, 0.7, 0.0))


def test_alpha_make_border_spreads_colour():
    alpha = np.zeros((3, 3), dtype=np.float32)
    alpha[1, 1] = 1.0
    plane = np.full((3, 3), 0.6, dtype=np.float32)
    (out,) = alpha_make_border([plane], alpha, 1)
    assert np.allclose(out, 0.6, atol=1e-6)


def test_alpha_make_border_keeps_visible_pixels():
    rng = np.random.default_rng(4)
    alpha = (rng.random((6, 6)) > 0.5).astype(np.float32)
    planes = [rng.random((6, 6)).astype(np.float32) for _ in range(3)]
    out = alpha_make_border(planes, alpha, 3)
    for before, after in zip(planes, out):
        assert np.allclose(after[alpha > 0], before[alpha > 0])
        assert after.min() >= 0.0 and after.max() <= 1.0


def test_pad_image_layout():
    img = _image((5, 7))
    net_offset, outer, crop = 2, 1, 4
    pad = net_offset + outer
    out = pad_image(img, net_offset, outer, crop, crop)
    assert (out.shape[0] - 2 * pad) % crop == 0 and out.shape[0] - 2 * pad >= 5
    assert (out.shape[1] - 2 * pad) % crop == 0 and out.shape[1] - 2 * pad >= 7
    assert np.array_equal(out[pad : pad + 5, pad : pad + 7], img)
    assert np.array_equal(out[0, pad : pad + 7], img[0])
    assert np.array_equal(out[-1, pad : pad + 7], img[-1])
    assert np.all(out[pad : pad + 5, -1] == img[:, -1])


def test_pad_image_rejects_zero_crop():
    with pytest.raises(ValueError):
        pad_image(np.zeros((2, 2)), 0, 0, 0, 1)


def test_alpha_clean_zeroes_transparent_colour():
    img = _image((3, 3, 4), seed=5)
    img[:, :, 3] = 200
    img[1, 2, 3] = 0
    out = alpha_clean(img)
    assert np.array_equal(out[1, 2], [0, 0, 0, 0])
    mask = np.ones((3, 3), dtype=bool)
    mask[1, 2] = False
    assert np.array_equal(out[mask], img[mask])


def test_alpha_clean_leaves_colour_image():
    img = _image((2, 2, 3))
    assert np.array_equal(alpha_clean(img), img)


def test_rgb_model_colour_scale_two():
    img = _image((5, 6, 3))
    job = ImageJob(img)
    _run(job, 3, scale=2)
    job.postprocess(3, Fraction(2), 8)
    assert np.array_equal(job.end_image, img.repeat(2, 0).repeat(2, 1))


def test_y_model_gray_scale_two():
    img = _image((5, 6))
    job = ImageJob(img)
    _run(job, 1, scale=2)
    job.postprocess(1, 2, 8)
    assert np.array_equal(job.end_image, img.repeat(2, 0).repeat(2, 1))


def test_rgb_model_gray_round_trip():
    img = _image((4, 7))
    job = ImageJob(img)
    _run(job, 3)
    job.postprocess(3, 1, 8)
    assert np.array_equal(job.end_image, img)


def test_y_model_colour_round_trip():
    img = _image((6, 5, 3), seed=6)
    job = ImageJob(img)
    _run(job, 1)
    job.postprocess(1, 1, 8)
    diff = np.abs(job.end_image.astype(np.int16) - img.astype(np.int16))
    assert job.end_image.shape == img.shape
    assert diff.max() <= 2


def test_rgb_model_rgba_keeps_alpha_and_clears_transparent():
    img = _image((6, 6, 4), seed=7)
    img[:, :3, 3] = 0
    img[:, 3:, 3] = 255
    job = ImageJob(img)
    job.preprocess(3, 2)
    assert job.has_alpha
    padded_a, _ = job.padded_alpha(2, 1, 4, 4, 1)
    assert padded_a.ndim == 3 and padded_a.shape[2] == 3

    job = ImageJob(img)
    _run(job, 3)
    job.postprocess(3, 1, 8)
    end = job.end_image
    assert np.array_equal(end[:, :, 3], img[:, :, 3])
    visible = (img[:, :, 3] > 0)[:, :, None]
    assert np.array_equal(end[:, :, :3], img[:, :, :3] * visible)


def test_y_model_rgba_keeps_alpha():
    img = _image((6, 6, 4), seed=8)
    img[:3, :, 3] = 0
    img[3:, :, 3] = 255
    job = ImageJob(img)
    _run(job, 1)
    job.postprocess(1, 1, 8)
    end = job.end_image
    assert np.array_equal(end[:, :, 3], img[:, :, 3])
    assert np.all(end[:3, :, :3] == 0)
    diff = np.abs(end[3:, :, :3].astype(np.int16) - img[3:, :, :3].astype(np.int16))
    assert diff.max() <= 2


def test_one_color_alpha_is_not_processed_but_restored():
    img = _image((4, 4, 4), seed=9)
    img[:, :, 3] = 128
    job = ImageJob(img)
    job.preprocess(3, 2)
    assert job.has_alpha is False

    job = ImageJob(img)
    _run(job, 3, scale=2)
    job.postprocess(3, 2, 8)
    end = job.end_image
    assert end.shape == (8, 8, 4)
    assert np.all(end[:, :, 3] == 128)
    assert np.array_equal(end[:, :, :3], img[:, :, :3].repeat(2, 0).repeat(2, 1))


def test_scale_from_size():
    job = ImageJob(_image((4, 6, 3)))
    assert job.scale_from_width(12) == Fraction(12, 6)
    assert job.scale_from_height(3) == Fraction(3, 4)


def test_postprocess_to_size_and_depths():
    img = _image((4, 4))
    job = ImageJob(img)
    _run(job, 1, net_offset=1, outer_padding=0, crop=2)
    job.postprocess_to_size(1, 3, 5, 8)
    assert job.end_image.shape == (5, 3)
    assert job.end_image.dtype == np.uint8

    job = ImageJob(img)
    _run(job, 1)
    job.postprocess(1, 1, 16)
    assert job.end_image.dtype == np.uint16
    assert np.array_equal(job.end_image, img.astype(np.uint16) * 257)

    job = ImageJob(img)
    _run(job, 1)
    job.postprocess(1, 1, 32)
    assert job.end_image.dtype == np.float32
    assert np.allclose(job.end_image, img / 255.0, atol=1e-6)


def test_postprocess_shrinks():
    img = _image((8, 8, 3), seed=10)
    job = ImageJob(img)
    _run(job, 3)
    job.postprocess(3, Fraction(1, 4), 8)
    assert job.end_image.shape == (2, 2, 3)


def test_from_buffer_with_stride():
    rgb = _image((3, 4, 3), seed=11)
    data = b"".join(row.tobytes() + b"\x00\x00" for row in rgb)
    job = ImageJob.from_buffer(data, 4, 3, 3, 14)
    assert job.request_denoise is False
    _run(job, 3)
    job.postprocess(3, 1, 8)
    assert np.array_equal(job.end_image, rgb[:, :, ::-1])


def test_from_buffer_errors():
    with pytest.raises(ValueError):
        ImageJob.from_buffer(b"\x00" * 10, 4, 3, 3, 12)
    with pytest.raises(ValueError):
        ImageJob.from_buffer(b"\x00" * 100, 2, 2, 2, 4)
    with pytest.raises(ValueError):
        ImageJob.from_buffer(b"\x00" * 100, 4, 2, 3, 8)


def test_constructor_rejects_two_channels():
    with pytest.raises(ValueError):
        ImageJob(np.zeros((2, 2, 2), dtype=np.uint8))


def test_load_png_and_jpeg(tmp_path):
    img = _image((5, 5, 3), seed=12)
    png = tmp_path / "picture.png"
    write_pixels(img, png)
    job = ImageJob.load(png)
    assert job.request_denoise is False
    _run(job, 3)
    job.postprocess(3, 1, 8)
    assert np.array_equal(job.end_image, img)

    jpeg = tmp_path / "photo.JPEG"
    write_pixels(img, jpeg)
    assert ImageJob.load(jpeg).request_denoise is True


def test_load_missing_file(tmp_path):
    with pytest.raises(FailedOpenInputFileError):
        ImageJob.load(tmp_path / "missing.png")


def test_save_round_trip(tmp_path):
    img = _image((4, 5, 3), seed=13)
    job = ImageJob(img)
    _run(job, 3, scale=2)
    job.postprocess(3, 2, 8)
    out = tmp_path / "out.png"
    job.save(out)
    assert np.array_equal(load_pixels(out), job.end_image)


def test_order_errors():
    job = ImageJob(_image((4, 4, 3)))
    with pytest.raises(ValueError):
        job.padded_rgb(1, 0, 2, 2, 1)
    with pytest.raises(ValueError):
        job.save("never.png")
    job.preprocess(3, 1)
    with pytest.raises(ValueError):
        job.padded_alpha(1, 0, 2, 2, 1)
    with pytest.raises(ValueError):
        job.preprocess(3, 1)