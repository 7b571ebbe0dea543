import io

import numpy as np
import torch
import torchvision.transforms as transforms
from PIL import Image, UnidentifiedImageError

from image_classifier.config import Layout
from image_classifier.errors import DecodeError

# Deterministic resampling filter for every resize
RESAMPLE = Image.Resampling.BILINEAR

# Single-channel modes holding more than 8 bits per sample
WIDE_MODES = ("I", "I;16", "I;16B", "I;16L", "I;16N")


def _to_8bit(image):
    """Rescale a 16-bit grayscale image to 8 bits instead of clamping at 255."""
    samples = np.clip(np.asarray(image, dtype=np.int64), 0, 65535) >> 8
    return Image.fromarray(samples.astype(np.uint8))


def decode_image(image_bytes, size):
    """Decode compressed image bytes into an RGB image of exactly ``size`` (width, height)."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            if image.mode in WIDE_MODES:
                image = _to_8bit(image)
            rgb_image = image.convert("RGB")
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        SyntaxError,
        ValueError,
    ) as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    if rgb_image.size != tuple(size):
        rgb_image = rgb_image.resize(tuple(size), RESAMPLE)
    return rgb_image


class TensorEncoder:
    """Turns a resized RGB image into the float32 input tensor a network expects.

    Channel values are scaled to [0, 1] and normalized in double precision
    with the per-channel mean/std derived from the model's
    ``NormalizationSpec``, then stored as float32 in the declared layout.
    """

    def __init__(self, normalization, layout, size=None):
        self.normalization = normalization
        self.layout = layout
        self.size = tuple(size) if size is not None else None
        self.transform = self._get_transforms()

    def _get_transforms(self):
        mean, std = self.normalization.unit_mean_std()
        return transforms.Compose([
            transforms.PILToTensor(),
            transforms.ConvertImageDtype(torch.float64),
            transforms.Normalize(mean=mean, std=std),
        ])

    def encode(self, image):
        if image.mode != "RGB":
            raise ValueError(f"Expected an RGB image, got mode {image.mode}")
        if self.size is not None and image.size != self.size:
            raise ValueError(f"Expected a {self.size} image, got {image.size}")

        chw = self.transform(image).to(torch.float32)
        if self.layout is Layout.NHWC:
            tensor = chw.permute(1, 2, 0)
        else:
            tensor = chw
        return tensor.unsqueeze(0).contiguous().numpy()

    __call__ = encode
