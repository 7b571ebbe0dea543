import os
from dataclasses import dataclass, field, replace
from enum import Enum

from image_classifier.errors import ConfigurationError


# Model backends
class Backend(Enum):
    ONNX = "onnx"
    TORCHSCRIPT = "torchscript"


class Layout(Enum):
    NHWC = "nhwc"  # channel-last: [1, H, W, 3]
    NCHW = "nchw"  # channel-first: [1, 3, H, W]


class OutputKind(Enum):
    AUTO = "auto"
    PROBABILITIES = "probabilities"
    LOGITS = "logits"


class NormalizationKind(Enum):
    SYMMETRIC = "symmetric"
    STANDARDIZE = "standardize"


IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class NormalizationSpec:
    """Maps an 8-bit channel value into the network's numeric domain.

    ``SYMMETRIC`` computes ``(value - offset) / scale`` on every channel.
    ``STANDARDIZE`` computes ``(value / 255 - mean[c]) / std[c]``.
    """

    kind: NormalizationKind
    offset: float = 127.0
    scale: float = 128.0
    mean: tuple = IMAGENET_MEAN
    std: tuple = IMAGENET_STD

    @classmethod
    def symmetric(cls, offset=127.0, scale=128.0):
        return cls(NormalizationKind.SYMMETRIC, offset=offset, scale=scale)

    @classmethod
    def standardize(cls, mean=IMAGENET_MEAN, std=IMAGENET_STD):
        return cls(NormalizationKind.STANDARDIZE, mean=tuple(mean), std=tuple(std))

    def unit_mean_std(self):
        """Return per-channel (mean, std) for values already scaled to [0, 1]."""
        if self.kind is NormalizationKind.SYMMETRIC:
            mean = self.offset / 255.0
            std = self.scale / 255.0
            return (mean,) * 3, (std,) * 3
        return tuple(self.mean), tuple(self.std)


@dataclass(frozen=True)
class ModelPreset:
    backend: Backend
    layout: Layout
    normalization: NormalizationSpec
    width: int = 224
    height: int = 224
    output_kind: OutputKind = OutputKind.AUTO
    model_file: str = "model.onnx"


MODEL_PRESETS = {
    # EfficientNet-Lite4 expects NHWC float32 in [-1, 1]
    "efficientnet-lite4": ModelPreset(
        backend=Backend.ONNX,
        layout=Layout.NHWC,
        normalization=NormalizationSpec.symmetric(),
        model_file="efficientnet-lite4-11.onnx",
    ),
    "resnet-imagenet": ModelPreset(
        backend=Backend.ONNX,
        layout=Layout.NCHW,
        normalization=NormalizationSpec.standardize(),
        model_file="resnet18.onnx",
    ),
}

DEFAULT_PRESET = "efficientnet-lite4"
MODEL_DIR = "model"


@dataclass(frozen=True)
class ServiceConfig:
    """Per-deployment settings, fixed for the lifetime of the process."""

    model_path: str
    labels_path: str
    backend: Backend = Backend.ONNX
    width: int = 224
    height: int = 224
    layout: Layout = Layout.NHWC
    normalization: NormalizationSpec = field(default_factory=NormalizationSpec.symmetric)
    output_kind: OutputKind = OutputKind.AUTO
    providers: tuple = ("CPUExecutionProvider",)
    decode_error_status: int = 500
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_file: str = "image_classifier.log"

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(
                f"Input size must be positive, got {self.width}x{self.height}"
            )
        if self.decode_error_status not in (400, 500):
            raise ConfigurationError(
                f"DECODE_ERROR_STATUS must be 400 or 500, got {self.decode_error_status}"
            )
        _, std = self.normalization.unit_mean_std()
        if any(s <= 0 for s in std):
            raise ConfigurationError(f"Normalization scale must be positive, got {std}")

    @property
    def input_size(self):
        return self.width, self.height

    @classmethod
    def from_preset(cls, name, model_dir=MODEL_DIR, **overrides):
        try:
            preset = MODEL_PRESETS[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown model preset {name!r}, expected one of {sorted(MODEL_PRESETS)}"
            ) from None
        config = cls(
            model_path=os.path.join(model_dir, preset.model_file),
            labels_path=os.path.join(model_dir, "labels.txt"),
            backend=preset.backend,
            width=preset.width,
            height=preset.height,
            layout=preset.layout,
            normalization=preset.normalization,
            output_kind=preset.output_kind,
        )
        return replace(config, **overrides) if overrides else config

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        overrides = {}

        if "MODEL_PATH" in env:
            overrides["model_path"] = env["MODEL_PATH"]
        if "LABELS_PATH" in env:
            overrides["labels_path"] = env["LABELS_PATH"]
        if "MODEL_BACKEND" in env:
            overrides["backend"] = _parse_enum(Backend, env["MODEL_BACKEND"], "MODEL_BACKEND")
        if "INPUT_WIDTH" in env:
            overrides["width"] = _parse_int(env["INPUT_WIDTH"], "INPUT_WIDTH")
        if "INPUT_HEIGHT" in env:
            overrides["height"] = _parse_int(env["INPUT_HEIGHT"], "INPUT_HEIGHT")
        if "TENSOR_LAYOUT" in env:
            overrides["layout"] = _parse_enum(Layout, env["TENSOR_LAYOUT"], "TENSOR_LAYOUT")
        if "OUTPUT_KIND" in env:
            overrides["output_kind"] = _parse_enum(OutputKind, env["OUTPUT_KIND"], "OUTPUT_KIND")
        if "ORT_PROVIDERS" in env:
            overrides["providers"] = tuple(
                p.strip() for p in env["ORT_PROVIDERS"].split(",") if p.strip()
            )
        if "DECODE_ERROR_STATUS" in env:
            overrides["decode_error_status"] = _parse_int(
                env["DECODE_ERROR_STATUS"], "DECODE_ERROR_STATUS"
            )
        if "HOST" in env:
            overrides["host"] = env["HOST"]
        if "PORT" in env:
            overrides["port"] = _parse_int(env["PORT"], "PORT")
        if "LOG_LEVEL" in env:
            overrides["log_level"] = env["LOG_LEVEL"].upper()
        if "LOG_FILE" in env:
            overrides["log_file"] = env["LOG_FILE"]

        normalization = _normalization_from_env(env)
        if normalization is not None:
            overrides["normalization"] = normalization

        return cls.from_preset(
            env.get("MODEL_PRESET", DEFAULT_PRESET),
            model_dir=env.get("MODEL_DIR", MODEL_DIR),
            **overrides,
        )


def _normalization_from_env(env):
    if "NORMALIZATION" not in env:
        return None
    kind = _parse_enum(NormalizationKind, env["NORMALIZATION"], "NORMALIZATION")
    if kind is NormalizationKind.SYMMETRIC:
        return NormalizationSpec.symmetric(
            offset=_parse_float(env.get("NORM_OFFSET", "127"), "NORM_OFFSET"),
            scale=_parse_float(env.get("NORM_SCALE", "128"), "NORM_SCALE"),
        )
    mean = _parse_triple(env["NORM_MEAN"], "NORM_MEAN") if "NORM_MEAN" in env else IMAGENET_MEAN
    std = _parse_triple(env["NORM_STD"], "NORM_STD") if "NORM_STD" in env else IMAGENET_STD
    return NormalizationSpec.standardize(mean=mean, std=std)


def _parse_enum(enum_cls, value, name):
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"{name}={value!r} is not one of: {choices}") from None


def _parse_int(value, name):
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


def _parse_float(value, name):
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def _parse_triple(value, name):
    parts = [p for p in value.split(",") if p.strip()]
    if len(parts) != 3:
        raise ConfigurationError(f"{name} needs three comma-separated values, got {value!r}")
    return tuple(_parse_float(p, name) for p in parts)
