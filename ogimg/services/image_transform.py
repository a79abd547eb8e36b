"""
Image transforms used by the composer.

Public functions:
  fit_resize(buf, width, height) -> bytes
      Resize and attention-crop an encoded image to exactly width x height.
      Returns `buf` itself when both dimensions already match.
  scale_to_height(buf, height) -> bytes
      Uniformly scale an encoded image to the given height.
  circular_mask(image) -> Image
      Hard-edged circular crop with transparent corners.
  encode_jpeg(image, quality) -> bytes
      Final output encoding shared by the HTTP route and the CLI.

Sizes and pixels are always taken after EXIF orientation is applied, so a
sideways phone photo is cropped and drawn the way it is displayed.

The crop window for fit_resize is picked by `attention_crop_box`, which
scores a downsampled copy of the source for edges, skin tones and
saturated colour and slides the target-aspect window to the position
holding the most of that score, instead of always cutting the centre.
"""
import logging
from io import BytesIO
from typing import Tuple

import numpy as np
from PIL import ExifTags, Image, ImageFilter, ImageOps, UnidentifiedImageError

from ogimg.errors import DecodeError, TransformError
from ogimg.settings import settings

logger = logging.getLogger(__name__)

ANALYSIS_MAX_SIDE = 256
EDGE_WEIGHT = 1.0
SKIN_WEIGHT = 1.6
SATURATION_WEIGHT = 0.8
SATURATION_MIN_VALUE = 0.2
SALIENCY_BLUR_RADIUS = 3

# EXIF orientations that rotate by 90 or 270 degrees
TRANSPOSED_ORIENTATIONS = (5, 6, 7, 8)

Box = Tuple[float, float, float, float]


def image_size(buf: bytes) -> Tuple[int, int]:
    """Read the displayed pixel size from the image header without decoding pixels."""
    try:
        with Image.open(BytesIO(buf)) as img:
            w, h = img.size
            orientation = img.getexif().get(ExifTags.Base.Orientation)
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"not a valid image: {exc}") from exc
    except OSError as exc:
        raise DecodeError(f"could not read image header: {exc}") from exc
    if orientation in TRANSPOSED_ORIENTATIONS:
        return h, w
    return w, h


def decode(buf: bytes) -> Image.Image:
    """Decode an encoded image into upright RGB or RGBA pixels."""
    try:
        img = Image.open(BytesIO(buf))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"not a valid image: {exc}") from exc
    except OSError as exc:
        raise DecodeError(f"could not decode image: {exc}") from exc
    return _normalize_mode(img)


def encode(img: Image.Image) -> bytes:
    """Losslessly re-encode an intermediate image."""
    out = BytesIO()
    try:
        img.save(out, format="PNG")
    except (OSError, ValueError) as exc:
        raise TransformError(f"could not encode image: {exc}") from exc
    return out.getvalue()


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    out = BytesIO()
    try:
        img.convert("RGB").save(out, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise TransformError(f"could not encode JPEG: {exc}") from exc
    return out.getvalue()


def _normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")


def fit_resize(buf: bytes, width: int, height: int) -> bytes:
    """
    Resize `buf` to exactly width x height, cropping to the area of interest
    when aspect ratios differ.

    Only the header is read when the size already matches on BOTH axes; in
    that case the very same buffer is returned.
    """
    if width <= 0 or height <= 0:
        raise TransformError(f"invalid target size {width}x{height}")
    src_w, src_h = image_size(buf)
    if src_w == width and src_h == height:
        return buf

    logger.info("resizing an image to %dx%d px", width, height)
    img = decode(buf)
    return encode(fit_image(img, width, height))


def fit_image(img: Image.Image, width: int, height: int) -> Image.Image:
    """Decoded-image counterpart of fit_resize."""
    if img.size == (width, height):
        return img
    box = attention_crop_box(img, width, height)
    try:
        return img.resize((width, height), Image.Resampling.LANCZOS, box=box)
    except (OSError, ValueError) as exc:
        raise TransformError(f"could not resize to {width}x{height}: {exc}") from exc


def scale_to_height(buf: bytes, height: int) -> bytes:
    """Scale `buf` uniformly so that its height equals `height`."""
    if height <= 0:
        raise TransformError(f"invalid target height {height}")
    src_w, src_h = image_size(buf)
    if src_h == height:
        return buf

    width = max(1, round(src_w * height / src_h))
    logger.info("scaling an image to %dx%d px", width, height)
    img = decode(buf)
    try:
        scaled = img.resize((width, height), Image.Resampling.LANCZOS)
    except (OSError, ValueError) as exc:
        raise TransformError(f"could not scale to height {height}: {exc}") from exc
    return encode(scaled)


def circular_mask(image: Image.Image) -> Image.Image:
    """
    Return an RGBA copy of `image` where everything outside the centred disk
    of radius floor(min(w, h) / 2) is fully transparent.
    """
    logger.info("circling an image")
    w, h = image.size
    r = min(w, h) // 2
    cx, cy = w / 2.0, h / 2.0

    ys, xs = np.ogrid[0:h, 0:w]
    # A pixel is kept only if both its origin and its centre lie within the disk.
    d_origin = (xs - cx) ** 2 + (ys - cy) ** 2
    d_centre = (xs + 0.5 - cx) ** 2 + (ys + 0.5 - cy) ** 2
    inside = np.maximum(d_origin, d_centre) <= r * r

    out = image.convert("RGBA")
    alpha = np.asarray(out.getchannel("A"), dtype=np.uint8)
    alpha = np.where(inside, alpha, 0).astype(np.uint8)
    out.putalpha(Image.fromarray(alpha))
    return out


def saliency_map(img: Image.Image) -> np.ndarray:
    """
    Score each pixel of a downsampled copy of `img` for visual interest.

    Returns a float32 array of the analysis copy's size (h, w).
    """
    small = img.convert("RGB")
    small.thumbnail((ANALYSIS_MAX_SIDE, ANALYSIS_MAX_SIDE), Image.Resampling.BILINEAR)

    edges = np.asarray(small.convert("L").filter(ImageFilter.FIND_EDGES), dtype=np.float32) / 255.0

    rgb = np.asarray(small, dtype=np.float32)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    hi = rgb.max(axis=-1)
    lo = rgb.min(axis=-1)
    skin = (
        (r > 95) & (g > 40) & (b > 20)
        & (r > g) & (r > b)
        & (np.abs(r - g) > 15)
        & (hi - lo > 15)
    ).astype(np.float32)

    value = hi / 255.0
    saturation = np.where(hi > 0, (hi - lo) / np.maximum(hi, 1.0), 0.0)
    saturation = np.where(value > SATURATION_MIN_VALUE, saturation, 0.0).astype(np.float32)

    score = EDGE_WEIGHT * edges + SKIN_WEIGHT * skin + SATURATION_WEIGHT * saturation
    peak = float(score.max())
    if peak <= 0:
        return np.zeros(score.shape, dtype=np.float32)

    as_l = Image.fromarray(np.clip(score / peak * 255.0, 0, 255).astype(np.uint8))
    blurred = as_l.filter(ImageFilter.GaussianBlur(radius=SALIENCY_BLUR_RADIUS))
    return np.asarray(blurred, dtype=np.float32)


def _best_offset(profile: np.ndarray, window: int) -> int:
    """Offset of the `window`-long slice of `profile` with the largest sum.

    Ties resolve to the offset closest to the centre.
    """
    n = len(profile)
    if window >= n:
        return 0
    csum = np.concatenate(([0.0], np.cumsum(profile, dtype=np.float64)))
    sums = csum[window:] - csum[:-window]
    best = sums.max()
    candidates = np.flatnonzero(np.isclose(sums, best))
    centre = (n - window) / 2.0
    return int(candidates[np.argmin(np.abs(candidates - centre))])


def attention_crop_box(img: Image.Image, width: int, height: int) -> Box:
    """
    Pick the source region to scale into width x height.

    The region has the target aspect ratio and spans the full source along
    one axis; along the other it is placed over the most salient band.
    """
    src_w, src_h = img.size
    scale = max(width / src_w, height / src_h)
    crop_w = min(src_w, width / scale)
    crop_h = min(src_h, height / scale)

    if src_w - crop_w < 0.5 and src_h - crop_h < 0.5:
        return (0.0, 0.0, float(src_w), float(src_h))

    saliency = saliency_map(img)
    an_h, an_w = saliency.shape
    if src_w - crop_w >= 0.5:
        ratio = an_w / src_w
        window = max(1, int(round(crop_w * ratio)))
        offset = _best_offset(saliency.sum(axis=0), window) / ratio
        left = min(max(0.0, offset), src_w - crop_w)
        box = (left, 0.0, left + crop_w, float(src_h))
    else:
        ratio = an_h / src_h
        window = max(1, int(round(crop_h * ratio)))
        offset = _best_offset(saliency.sum(axis=1), window) / ratio
        top = min(max(0.0, offset), src_h - crop_h)
        box = (0.0, top, float(src_w), top + crop_h)

    if settings.DEBUG_CROPS:
        logger.info("attention crop %dx%d -> %dx%d box=%s", src_w, src_h, width, height, box)
    return box
