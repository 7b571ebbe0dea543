import io

import pytest
from PIL import Image

from image_classifier.config import ServiceConfig
from image_classifier.model import ClassifierRuntime
from image_classifier.postprocessing import LabelSet
from image_classifier.server import create_app


def create_test_image(width, height, color=(255, 0, 0), mode="RGB", img_format="PNG"):
    """Create an encoded test image filled with a single color."""
    img = Image.new(mode, (width, height), color=color)
    img_bytes = io.BytesIO()
    img.save(img_bytes, format=img_format)
    return img_bytes.getvalue()


class StubAdapter:
    """Inference adapter returning a fixed output and recording its inputs."""

    def __init__(self, output):
        self.output = output
        self.calls = []

    def run(self, tensor):
        self.calls.append(tensor)
        return self.output


class FailingAdapter:
    def __init__(self, error):
        self.error = error
        self.calls = 0

    def run(self, tensor):
        self.calls += 1
        raise self.error


@pytest.fixture
def labels():
    return LabelSet(["cat", "dog", "red-box"])


@pytest.fixture
def config(tmp_path):
    return ServiceConfig.from_preset("efficientnet-lite4", model_dir=str(tmp_path))


@pytest.fixture
def stub_adapter():
    return StubAdapter([0.01, 0.02, 0.97])


@pytest.fixture
def runtime(config, stub_adapter, labels):
    return ClassifierRuntime(
        config,
        adapter_factory=lambda _config: stub_adapter,
        labels_loader=lambda _path: labels,
    )


@pytest.fixture
def client(config, runtime):
    app = create_app(config, runtime)
    return app.test_client()
