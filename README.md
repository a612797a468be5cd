# rpicamkit

Tools that turn raw camera frame buffers into files. The package has
still-image writers for several formats, sinks for encoded video, two simple
video encoders and a focus-by-ear helper. Everything works on plain
`bytes`-like buffers, so frames can come from any capture source.

Install with `pip install .`. The only runtime dependency is Pillow. The tests
use pytest: `pip install .[test]`, then `pytest`.

## Stream descriptions and options

`rpicamkit.stream` holds the records that the rest of the package uses:

- `StreamInfo(width, height, stride, pixel_format, colour_space=None)`
- `PixelFormat`, which covers RGB/BGR, YUV420, YUYV and the Bayer raw formats
- `Platform` (`VC4`, `PISP`)
- `StillOptions`, used by the still writers: `encoding`, `quality`, `restart`, `thumb_width`,
  `thumb_height`, `thumb_quality`, `exif`, ...
- `VideoOptions`, used by the encoders and outputs: `codec`, `output`, `circular`, `segment`,
  `split`, `wrap`, `flush`, `pause`, `save_pts`, `metadata`, `metadata_format`, `quality`,
  `platform`, ...

## Still images

Every writer takes the frame planes (`mem`), a `StreamInfo`, a target file name
and a `StillOptions`. A file name of `"-"` writes to standard output, except
for DNG.

| Function | Module | Input formats |
|---|---|---|
| `bmp_save(mem, info, filename, options)` | `rpicamkit.bmp` | RGB888 |
| `png_save(mem, info, filename, options)` | `rpicamkit.png` | BGR888 |
| `yuv_save(mem, info, filename, options)` | `rpicamkit.yuv` | YUV420, YUYV (with `encoding="yuv420"`); RGB888, BGR888, RGB161616, BGR161616 (with `encoding="rgb24"` or `"rgb48"`) |
| `jpeg_save(mem, info, metadata, filename, cam_model, options)` | `rpicamkit.jpeg` | YUV420, YUYV |
| `dng_save(mem, info, metadata, filename, cam_model, options)` | `rpicamkit.dng` | packed, unpacked and compressed Bayer raw |

Any other input format raises `ValueError`.

```python
from rpicamkit.stream import PixelFormat, StillOptions, StreamInfo
from rpicamkit.jpeg import jpeg_save

info = StreamInfo(width=640, height=480, stride=640, pixel_format=PixelFormat.YUV420)
frame = bytes(640 * 480 * 3 // 2)
jpeg_save([frame], info, {"ExposureTime": 10000, "AnalogueGain": 2.0},
          "out.jpg", "imx000", StillOptions())
```

`jpeg_save` writes an EXIF segment with these fields:

- the make, model and software
- the capture time
- the exposure time, ISO and subject distance, taken from the `ExposureTime`,
  `AnalogueGain`/`DigitalGain` and `LensPosition` metadata keys

When `thumb_quality` is non-zero, it also embeds a thumbnail. If the thumbnail
does not fit in 60000 bytes, the quality drops by 5 at a time until it does.

You can supply extra tags in `StillOptions.exif` as strings of the form
`IFD.TagName=value[,value...]`. The IFD is one of `EXIF`, `IFD0`, `IFD1`,
`EINT` or `GPS`. `rpicamkit.jpeg.exif_read_tag` parses them. Unknown tag names
are logged and ignored. `rpicamkit.jpeg.yuv_to_jpeg` encodes a frame, resampled
to any size, on its own.

`dng_save` unpacks 10-, 12- and 16-bit raw data (`unpack_10bit`,
`unpack_12bit`, `unpack_16bit`) and decodes the compressed raw format
(`uncompress`). It writes a little-endian DNG containing:

- a small greyscale thumbnail
- the full CFA image
- black and white levels
- the as-shot neutral
- a colour matrix built from the `ColourCorrectionMatrix` and `ColourGains` metadata
- an EXIF directory with exposure time, ISO, date and subject distance

`rpicamkit.dng.Matrix` is the small 3x3 matrix type used for that. It provides
`transpose`, `cofactor`, `adjugate`, `determinant`, `inverse` and `*`.

## Video output

An `rpicamkit.output.Output` receives encoded buffers through
`output_ready(mem, timestamp_us, keyframe)`:

- After a start or a pause, nothing is written until the next keyframe.
- `signal()` toggles between recording and paused.
- Timestamps are shifted so that they stay continuous across pauses.
- With `save_pts` set, timestamps go to a "timecode format v2" file.
- With `metadata` set to a file name, or `"-"` for standard output, each
  frame's metadata is written as JSON or as `name=value` text, depending on
  `metadata_format`. Supply it beforehand through `metadata_ready(metadata)`.

A plain `Output` discards the buffers. Two subclasses store them:

- `rpicamkit.file_output.FileOutput` writes to `options.output`.
  - The name may contain a printf-style counter such as `clip%04d.h264`.
  - `"-"` writes to standard output.
  - `segment` starts a new file on the first keyframe after that many
    milliseconds.
  - `split` starts a new file each time recording restarts.
  - `wrap` makes the counter wrap round.
- `rpicamkit.circular_output.CircularOutput` keeps the last `options.circular`
  megabytes of frames in a `CircularBuffer`. On `close()` it writes them,
  starting from the first keyframe, to `options.output`.

All outputs are context managers. Call `close()`, or leave the `with` block, to
finish the files.

## Encoders

`rpicamkit.encoder_select.create_encoder(options, info)` chooses an encoder by
`options.codec`, ignoring case:

- `yuv420` gives `rpicamkit.null_encoder.NullEncoder`, which hands each buffer
  back unchanged.
- `mjpeg` gives `rpicamkit.mjpeg_encoder.MjpegEncoder`. It encodes YUV420
  frames to JPEG on four worker threads and delivers the results in frame
  order. `encode_yuv420_jpeg(mem, info, quality)` is the per-frame encoder.

To use an encoder:

1. Set `input_done_callback()` and `output_ready_callback(mem, timestamp_us, keyframe)`.
2. Feed frames with `encode_buffer(mem, info, timestamp_us)`.
3. Call `close()`. It delivers the frames still queued and re-raises any
   error from a callback.

Register further encoders with the `rpicamkit.encoder.register_encoder(name)`
decorator. It adds them to the shared `rpicamkit.encoder.factory`.

## Acoustic focus

`rpicamkit.acoustic_focus.AcousticFocusStage` maps the `FocusFoM` metadata
value to a frequency. The scale is logarithmic or linear, and the parameters
are set with `read(params)`. `fom_to_frequency(fom)` returns the frequency on
its own.

`process(metadata)` plays a short sine tone by starting `/usr/bin/play` (SoX).
It does this at most once a second. If the player cannot be started, the stage
stays silent.

## What the package does not do

- It has no network sink. Nothing here sends encoded video over UDP or TCP.
- Nothing picks an output sink from the options for you. Construct
  `FileOutput`, `CircularOutput` or `Output` yourself.
- No H.264 or libav encoder is included. `create_encoder` with codec `h264`
  or `libav` raises `RuntimeError`, unless you have registered encoders
  under those names.
- It does not capture frames from a camera. It only processes buffers that you
  hand it, and it has no command-line program.