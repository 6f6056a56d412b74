# w2xcore

Building blocks for a waifu2x-style image upscaler and denoiser, written with
NumPy and Pillow. It is a library: you put the steps together in your own
code.

## Install

    pip install .

To run the tests, install the `test` extra and run `pytest`:

    pip install .[test]
    pytest

## Modules

### `w2xcore.modelinfo`

- `read_model_info(path)` reads a model's `info.json` and returns a
  `ModelInfo`. That holds `name`, `arch_name`, `channels`,
  `has_noise_scale`, `has_noise_only` and `force_divisible_crop_size`. It
  also holds one `ModelParam` (`scale_factor`, `offset`,
  `recommended_crop_size`) for each of `noise`, `scale` and `noise_scale`.
  - Shared keys such as `offset` set all three.
  - Suffixed keys such as `offset_scale` override one of them.
- `ModelInfo.param_for(mode)` picks the parameters for a `ModelType`
  (`NOISE`, `SCALE`, `NOISE_SCALE`, `AUTO_SCALE`). `AUTO_SCALE` uses the
  `noise_scale` ones.
- `model_name(path)` returns the model name, or `""` if the file is
  unusable.

Failures raise subclasses of `Waifu2xError`:

- `FailedOpenModelFileError`
- `FailedParseModelFileError`
- `FailedWriteModelFileError`
- `FailedConstructModelError`
- `FailedProcessError`
- `FailedOpenInputFileError`
- `FailedOpenOutputFileError`

### `w2xcore.net`

- `ConvLayer` is one convolution or transposed convolution with a bias. It
  works on `(N, C, H, W)` float arrays.
- `ConvNet.from_json(path)` builds a network from a JSON list of layer
  descriptions. Each entry has these keys:
  - `nInputPlane`, `nOutputPlane`, `kW`, `weight` and `bias`;
  - optionally `dW`, `padW` and `class_name`.

  A class name containing `FullConvolution` or `Deconvolution` marks a
  transposed layer. `ConvNet.forward` applies the layers with a leaky ReLU
  (slope 0.1) between them.
- `Net(info, mode, network)`, or `Net.load(mode, param_path, info)`, ties a
  network to the model geometry. It exposes `inner_scale`, `net_offset`,
  `input_plane` and `scale`, and has these methods:
  - `input_memory_size` and `output_memory_size` give the float buffer size,
    in bytes, of one batch.
  - `reconstruct(image, crop_w, crop_h, outer_padding, batch_size)` runs a
    padded `(H, W)` or `(H, W, C)` image through the network block by block.
    It returns the unpadded, scaled result clipped to `[0, 1]`.

### `w2xcore.imagefile`

- `load_pixels(path)` and `decode_pixels(data, suffix)` decode images into
  BGR(A)-ordered arrays.
- `write_pixels(pixels, path, quality)` encodes an array by the file
  extension and writes it.
  - 16-bit PNG is supported.
  - `quality` applies to `.jpg` and `.webp`.
  - For `.tga` it switches RLE compression, which is on unless `quality` is
    `0`.
- `to_float` and `from_float` convert between 8/16-bit integers and
  `[0, 1]` floats. `depth_max_value` and `rounding_eps` give the constants
  used.
- `output_format(ext)` returns the `OutputFormat` for an extension: its bit
  depths and quality range.

### `w2xcore.image`

`ImageJob` carries one image through the pipeline. Create it with
`ImageJob.load(path)` or `ImageJob.from_buffer(source, width, height, channel, stride)`.
Loading a `.jpg` or `.jpeg` file sets `request_denoise`. Then call:

1. `preprocess(input_plane, net_offset)`: converts the image to floats, and
   to luma (`input_plane == 1`) or RGB. It spreads colour under transparent
   pixels.
2. `padded_rgb(...)`, and `padded_alpha(...)` when `has_alpha` is true:
   these hand over the image enlarged by nearest-neighbour and padded,
   together with its `(width, height)`.
3. `set_reconstructed_rgb(...)` and `set_reconstructed_alpha(...)`: these
   take back the network output.
4. `postprocess(input_plane, scale, depth)` or
   `postprocess_to_size(input_plane, width, height, depth)`: these rebuild
   the final image. It is then available as `end_image`.
5. `save(path, quality)`: writes the result.

`scale_from_width` and `scale_from_height` return a `Fraction` relative to
the original size.

The module also offers these helpers:

- `bgr_to_yuv` and `yuv_to_bgr`
- `resize`, with `"nearest"`, `"cubic"` or `"area"` sampling
- `is_one_color`
- `alpha_make_border`
- `pad_image`
- `alpha_clean`

### `w2xcore.langstrings`

`LangStringList` reads a tab-separated language list. Each line holds a
name, a primary id, a sub id and a file name. Lines starting with `;` are
skipped.

- `set_base_dir` sets the directory that holds the language files.
- `set_lang` and `set_lang_id` switch language. `find_lang` picks an exact
  match, then one with the same primary language, then the first entry.
- `get_string(key)` falls back to the first language in the list, then to
  `""`.

The functions `make_lang_id`, `primary_lang_id`, `sub_lang_id` and
`parse_number` handle language ids.

## Example

```python
from w2xcore.modelinfo import ModelType, read_model_info
from w2xcore.net import Net
from w2xcore.image import ImageJob

info = read_model_info("models/rgb/info.json")
net = Net.load(ModelType.SCALE, "models/rgb/scale2.0x_model.json", info)

job = ImageJob.load("input.png")
job.preprocess(net.input_plane, net.net_offset)
padded, size = job.padded_rgb(net.net_offset, 0, 128, 128, 1)
job.set_reconstructed_rgb(net.reconstruct(padded, 128, 128, 0, 1), size, net.inner_scale)
job.postprocess(net.input_plane, job.scale_from_width(job.width * 2), 8)
job.save("output.png", None)
```

An image with a varying alpha channel (`job.has_alpha`) needs its alpha
passed through `padded_alpha`, `reconstruct` and `set_reconstructed_alpha`
in the same way.

## What it does not do

- There is no command-line program and no graphical interface. The
  conversion steps above are called from your own code.
- Networks are loaded only from the JSON weight format. Binary or text
  network definitions are not read, and no converted model files are written
  back.
- Networks run on the CPU with NumPy. There is no GPU backend.
- Processing several files, choosing noise levels and splitting large scales
  into repeated steps are left to the caller.