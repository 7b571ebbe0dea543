"""Request-independent classification flow: bytes in, ClassificationResult out."""

from dataclasses import asdict, dataclass

from image_classifier.errors import ClientInputError
from image_classifier.postprocessing import decode_output
from image_classifier.preprocessing import TensorEncoder, decode_image


@dataclass(frozen=True)
class ClassificationResult:
    label: str
    confidence: float
    index: int

    def to_dict(self):
        return asdict(self)


class ClassificationPipeline:
    """Decode, encode, infer, decode output and resolve the label for one image."""

    def __init__(self, config, runtime):
        self.config = config
        self.runtime = runtime
        self.encoder = TensorEncoder(config.normalization, config.layout, size=config.input_size)

    def classify(self, image_bytes):
        if not image_bytes:
            raise ClientInputError()

        image = decode_image(image_bytes, self.config.input_size)
        tensor = self.encoder.encode(image)

        adapter, labels = self.runtime.get()
        raw_output = adapter.run(tensor)

        _, top = decode_output(raw_output, self.config.output_kind)
        return ClassificationResult(
            label=labels.resolve(top.index),
            confidence=top.confidence,
            index=top.index,
        )
