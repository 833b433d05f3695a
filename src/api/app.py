"""Flask API for the A/B test engine - called by page handlers and the admin UI."""
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(ROOT))

from flask import Flask, jsonify, request

from src.abtesting import (
    EngineConfig,
    Experiment,
    ExperimentEngine,
    ExperimentEvent,
    ExperimentNotFound,
    ExperimentStatus,
    FileExperimentStore,
    InvalidStateTransition,
    RequestContext,
    ValidationError,
)
from src.abtesting.schema import parse_datetime, utcnow

logger = logging.getLogger(__name__)


def create_app(engine: ExperimentEngine) -> Flask:
    """Build the Flask app around an engine owned by the caller."""
    app = Flask(__name__)
    app.config["ENGINE"] = engine

    @app.errorhandler(ExperimentNotFound)
    def not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(ValidationError)
    def invalid(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(InvalidStateTransition)
    def conflict(e):
        return jsonify({"error": str(e), "status": e.current}), 409

    @app.route("/ping", methods=["GET"])
    def ping():
        return "pong"

    @app.route("/experiments", methods=["GET"])
    def list_experiments():
        status = request.args.get("status")
        try:
            status = ExperimentStatus(status) if status else None
        except ValueError:
            return jsonify({"error": f"Unknown status {status}"}), 400
        exps = engine.list_experiments(status)
        return jsonify([e.to_dict() for e in exps])

    @app.route("/experiments", methods=["POST"])
    def create_experiment():
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Empty request"}), 400
        experiment_id = engine.create_experiment(Experiment.from_dict(data))
        return jsonify({"id": experiment_id}), 201

    @app.route("/experiments/<experiment_id>", methods=["GET"])
    def get_experiment(experiment_id):
        return jsonify(engine.get_experiment(experiment_id).to_dict())

    @app.route("/experiments/<experiment_id>/<action>", methods=["POST"])
    def lifecycle(experiment_id, action):
        handlers = {
            "start": engine.start_experiment,
            "pause": engine.pause_experiment,
            "complete": engine.complete_experiment,
        }
        if action == "assign":
            return assign(experiment_id)
        if action not in handlers:
            return jsonify({"error": f"Unknown action {action}"}), 404
        exp = handlers[action](experiment_id)
        return jsonify({"id": exp.id, "status": exp.status.value})

    def assign(experiment_id):
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        user_id = data.get("user_id")
        if not user_id:
            return jsonify({"error": "user_id is required"}), 400
        if not isinstance(data.get("context") or {}, dict):
            return jsonify({"error": "context must be a JSON object"}), 400
        context = RequestContext.from_dict(data.get("context"))
        if context.user_agent is None:
            context.user_agent = request.headers.get("User-Agent")
        if context.ip_address is None:
            context.ip_address = request.remote_addr
        variant_id = engine.assign_variant(
            experiment_id, user_id, data.get("session_id") or "", context
        )
        content = engine.get_variant_content(experiment_id, variant_id) if variant_id else None
        return jsonify({"variant_id": variant_id, "content": content})

    @app.route("/events", methods=["POST"])
    def track_event():
        data = request.get_json(silent=True) or {}
        try:
            event = ExperimentEvent(
                experiment_id=data["experiment_id"],
                variant_id=data["variant_id"],
                user_id=data["user_id"],
                session_id=data.get("session_id") or "",
                event=data["event"],
                value=float(data["value"]) if data.get("value") is not None else None,
                metadata=data.get("metadata") or {},
                timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
            )
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({"error": f"Malformed event: {e}"}), 400
        engine.track_event(event)
        return jsonify({"accepted": True}), 202

    @app.route("/experiments/<experiment_id>/variants/<variant_id>/content", methods=["GET"])
    def variant_content(experiment_id, variant_id):
        content = engine.get_variant_content(experiment_id, variant_id)
        if content is None:
            return jsonify({"error": "No content for inactive experiment or unknown variant"}), 404
        return jsonify(content)

    @app.route("/experiments/<experiment_id>/results", methods=["GET"])
    def results(experiment_id):
        return jsonify([r.to_dict() for r in engine.get_results(experiment_id)])

    @app.route("/experiments/<experiment_id>/analysis", methods=["GET"])
    def analysis(experiment_id):
        return jsonify(engine.analyze(experiment_id).to_dict())

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    config = EngineConfig.from_env()
    engine = ExperimentEngine(FileExperimentStore(config.data_dir), config=config)
    create_app(engine).run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
