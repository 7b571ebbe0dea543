"""Tests for the HTTP classification endpoint."""

import numpy as np
import pytest

from image_classifier.config import ServiceConfig
from image_classifier.errors import InferenceError
from image_classifier.model import ClassifierRuntime, InferenceAdapter
from image_classifier.server import create_app
from tests.conftest import FailingAdapter, StubAdapter, create_test_image

EMPTY_BODY_MESSAGE = "Send raw image bytes in the POST body (binary)."


def make_client(config, adapter, labels):
    runtime = ClassifierRuntime(
        config,
        adapter_factory=lambda _config: adapter,
        labels_loader=lambda _path: labels,
    )
    return create_app(config, runtime).test_client()


def test_red_image_end_to_end(client, stub_adapter):
    response = client.post("/classify", data=create_test_image(224, 224, color=(255, 0, 0)))

    assert response.status_code == 200
    body = response.get_json()
    assert body["label"] == "red-box"
    assert body["index"] == 2
    assert body["confidence"] == pytest.approx(0.97)

    (tensor,) = stub_adapter.calls
    assert tensor.shape == (1, 224, 224, 3)
    assert np.allclose(tensor[..., 0], 1.0)
    assert np.allclose(tensor[..., 1:], -127 / 128)


def test_root_path_also_classifies(client):
    response = client.post("/", data=create_test_image(64, 48))
    assert response.status_code == 200
    assert response.get_json()["label"] == "red-box"


def test_empty_body_is_client_error(client, stub_adapter, runtime):
    response = client.post("/classify", data=b"")

    assert response.status_code == 400
    assert response.get_json() == {"error": EMPTY_BODY_MESSAGE}
    assert stub_adapter.calls == []
    assert not runtime.is_loaded


def test_undecodable_body_is_server_error_by_default(client, stub_adapter):
    response = client.post("/classify", data=b"\x89PNG not really")

    assert response.status_code == 500
    assert response.get_json() == {"error": "Could not decode image."}
    assert stub_adapter.calls == []


def test_undecodable_body_status_is_configurable(tmp_path, labels):
    config = ServiceConfig.from_preset(
        "efficientnet-lite4", model_dir=str(tmp_path), decode_error_status=400
    )
    client = make_client(config, StubAdapter([1.0]), labels)

    response = client.post("/classify", data=b"garbage")
    assert response.status_code == 400


def test_inference_failure_is_server_error(config, labels):
    adapter = FailingAdapter(InferenceError("shape mismatch on input images:0"))
    client = make_client(config, adapter, labels)

    response = client.post("/classify", data=create_test_image(10, 10))

    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}
    assert adapter.calls == 1


def test_empty_model_output_is_server_error(config, labels):
    client = make_client(config, StubAdapter([]), labels)
    response = client.post("/classify", data=create_test_image(10, 10))
    assert response.status_code == 500


def test_logits_output_is_softmaxed(config, labels):
    client = make_client(config, StubAdapter([2.0, 1.0, 0.1]), labels)

    body = client.post("/classify", data=create_test_image(10, 10)).get_json()

    assert body["label"] == "cat"
    assert body["index"] == 0
    assert body["confidence"] == pytest.approx(0.659, abs=1e-3)


def test_index_outside_label_set_uses_fallback(config, labels):
    client = make_client(config, StubAdapter([0.0, 0.0, 0.0, 0.0, 1.0]), labels)
    body = client.post("/classify", data=create_test_image(10, 10)).get_json()
    assert body == {"label": "class_4", "confidence": 1.0, "index": 4}


def test_health_does_not_load_model(client, runtime):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["backend"] == "ONNX"
    assert body["layout"] == "NHWC"
    assert body["input_size"] == [224, 224]
    assert body["model_loaded"] is False
    assert not runtime.is_loaded


def test_get_on_classify_not_allowed(client):
    assert client.get("/classify").status_code == 405


class RecordedOutputAdapter(InferenceAdapter):
    """Real adapter base with a canned backend result."""

    name = "recorded"

    def __init__(self, output):
        self.output = output

    def _predict(self, tensor):
        return self.output


@pytest.mark.parametrize(
    "output",
    [
        np.array([[0.01, 0.02, 0.97]], dtype=np.float32),
        [[0.01, 0.02, 0.97]],
    ],
)
def test_confidence_survives_adapter_run_unchanged(config, labels, output):
    client = make_client(config, RecordedOutputAdapter(output), labels)

    response = client.post("/classify", data=create_test_image(224, 224, color=(255, 0, 0)))

    assert response.status_code == 200
    assert response.get_json() == {"label": "red-box", "confidence": 0.97, "index": 2}


def test_non_finite_output_is_json_server_error(config, labels):
    client = make_client(config, RecordedOutputAdapter([float("nan"), 0.5, 0.5]), labels)

    response = client.post("/classify", data=create_test_image(10, 10))

    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}


def test_missing_labels_file_is_json_server_error(tmp_path):
    config = ServiceConfig.from_preset("efficientnet-lite4", model_dir=str(tmp_path))
    runtime = ClassifierRuntime(config, adapter_factory=lambda _config: StubAdapter([1.0]))
    client = create_app(config, runtime).test_client()

    response = client.post("/classify", data=create_test_image(10, 10))

    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}
    assert not runtime.is_loaded
