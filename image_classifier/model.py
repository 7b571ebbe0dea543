import logging
import threading
import time

import numpy as np
import onnxruntime
import torch

from image_classifier.config import Backend
from image_classifier.errors import InferenceError
from image_classifier.postprocessing import LabelSet

logger = logging.getLogger(__name__)


class InferenceAdapter:
    """Runs a network on one encoded input tensor and returns its raw output vector."""

    name = "base"

    def _predict(self, tensor):
        raise NotImplementedError

    def run(self, tensor):
        start_time = time.perf_counter()
        try:
            output = self._predict(tensor)
        except InferenceError:
            raise
        except Exception as e:
            logger.error(f"Inference failed: {str(e)}", exc_info=True)
            raise InferenceError(f"{self.name} inference failed: {e}") from e
        latency = (time.perf_counter() - start_time) * 1000  # ms
        logger.info(f"Inference completed in {latency:.2f}ms")
        return np.asarray(output).reshape(-1)


class OnnxInferenceAdapter(InferenceAdapter):
    name = "onnx"

    def __init__(self, model_path, providers=("CPUExecutionProvider",)):
        try:
            self.session = onnxruntime.InferenceSession(model_path, providers=list(providers))
        except Exception as e:
            raise InferenceError(f"Failed to load ONNX model {model_path}: {e}") from e
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name
        logger.info(f"Initialized ONNX model with providers: {self.session.get_providers()}")

    def _predict(self, tensor):
        outputs = self.session.run([self.output_name], {self.input_name: tensor})
        return outputs[0]


class TorchScriptInferenceAdapter(InferenceAdapter):
    name = "torchscript"

    def __init__(self, model_path):
        try:
            self.model = torch.jit.load(model_path, map_location="cpu")
        except Exception as e:
            raise InferenceError(f"Failed to load TorchScript model {model_path}: {e}") from e
        self.model.eval()
        logger.info("Initialized TorchScript model")

    def _predict(self, tensor):
        with torch.no_grad():
            outputs = self.model(torch.from_numpy(tensor))
        return outputs.numpy()


def build_adapter(config):
    if config.backend is Backend.ONNX:
        return OnnxInferenceAdapter(config.model_path, providers=config.providers)
    if config.backend is Backend.TORCHSCRIPT:
        return TorchScriptInferenceAdapter(config.model_path)
    raise InferenceError(f"Unsupported backend: {config.backend}")


class ClassifierRuntime:
    """Process-wide model and label set, loaded at most once.

    The first caller of ``get()`` loads both under a lock; afterwards reads
    take no lock. ``adapter_factory`` and ``labels_loader`` default to the
    configured backend and ``LabelSet.from_file``.
    """

    def __init__(self, config, adapter_factory=None, labels_loader=None):
        self.config = config
        self._adapter_factory = adapter_factory or build_adapter
        self._labels_loader = labels_loader or LabelSet.from_file
        self._lock = threading.Lock()
        self._loaded = None

    @property
    def is_loaded(self):
        return self._loaded is not None

    def get(self):
        loaded = self._loaded
        if loaded is not None:
            return loaded
        with self._lock:
            if self._loaded is None:
                logger.info(f"Loading {self.config.backend.name} model from {self.config.model_path}")
                adapter = self._adapter_factory(self.config)
                labels = self._labels_loader(self.config.labels_path)
                self._loaded = (adapter, labels)
            return self._loaded

    def warm_up(self):
        self.get()
        return self
