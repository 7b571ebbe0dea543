import logging

from flask import Flask, jsonify, request

from image_classifier.config import ServiceConfig
from image_classifier.errors import (
    ClientInputError,
    ConfigurationError,
    DecodeError,
    EmptyOutputError,
    InferenceError,
)
from image_classifier.model import ClassifierRuntime
from image_classifier.pipeline import ClassificationPipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level="INFO", log_file=None):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def create_app(config=None, runtime=None):
    """Build the Flask app; the model is loaded on first request unless warmed up."""
    config = config or ServiceConfig.from_env()
    runtime = runtime or ClassifierRuntime(config)
    pipeline = ClassificationPipeline(config, runtime)

    app = Flask(__name__)
    app.config["CLASSIFIER_CONFIG"] = config
    app.extensions["classifier_runtime"] = runtime

    @app.errorhandler(ClientInputError)
    def client_input_error(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(DecodeError)
    def decode_error(e):
        logger.warning(f"Rejected undecodable image: {str(e)}")
        return jsonify({"error": DecodeError.default_message}), config.decode_error_status

    @app.errorhandler(InferenceError)
    @app.errorhandler(EmptyOutputError)
    @app.errorhandler(ConfigurationError)
    def inference_error(e):
        logger.error(f"Classification failed: {str(e)}", exc_info=e)
        return jsonify({"error": "Internal server error"}), 500

    @app.route('/', methods=['POST'])
    @app.route('/classify', methods=['POST'])
    def classify():
        image_bytes = request.get_data(cache=False)
        if not image_bytes:
            raise ClientInputError()
        result = pipeline.classify(image_bytes)
        logger.info(f"Classified image as {result.label} ({result.confidence:.4f})")
        return jsonify(result.to_dict())

    @app.route('/health')
    def health_check():
        """Health check endpoint"""
        return jsonify({
            "status": "healthy",
            "backend": config.backend.name,
            "model": config.model_path,
            "layout": config.layout.name,
            "input_size": [config.width, config.height],
            "model_loaded": runtime.is_loaded,
        })

    return app


def serve():
    config = ServiceConfig.from_env()
    configure_logging(config.log_level, config.log_file)

    runtime = ClassifierRuntime(config).warm_up()
    app = create_app(config, runtime)

    logger.info("Starting services:")
    logger.info(f"HTTP classification endpoint at http://{config.host}:{config.port}/classify")
    logger.info(f"Model backend: {config.backend.name}, layout: {config.layout.name}")

    app.run(host=config.host, port=config.port, threaded=True)


if __name__ == '__main__':
    serve()
