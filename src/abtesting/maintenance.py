"""
Scheduled maintenance for the engine.

Runs outside the assignment path (daily DAG or an operator): reload the
active set, complete experiments past their end date or maximum duration,
and write analysis reports for running experiments.
"""

import logging
from typing import Dict, List, Optional

from .engine import ExperimentEngine
from .errors import AbTestError
from .report import render_exec_summary

logger = logging.getLogger(__name__)


def expire_overdue_experiments(engine: ExperimentEngine) -> List[str]:
    """
    Complete active experiments past their end date or max duration.

    Returns:
        Ids of completed experiments
    """
    now = engine.clock()
    completed = []
    for exp in engine.get_active_experiments():
        if not engine.is_overdue(exp, now):
            continue
        try:
            engine.complete_experiment(exp.id)
        except AbTestError:
            logger.exception(f"Failed to complete overdue experiment {exp.id}")
            continue
        completed.append(exp.id)
    if completed:
        logger.info(f"Completed {len(completed)} overdue experiments: {completed}")
    return completed


def report_experiments(
    engine: ExperimentEngine,
    experiment_ids: List[str],
    artifacts_dir: Optional[str] = None,
) -> Dict[str, str]:
    """
    Analyze experiments and render their executive summaries.

    Returns:
        Mapping experiment_id -> recommendation
    """
    artifacts_dir = artifacts_dir or engine.config.artifacts_dir
    recommendations = {}
    for experiment_id in experiment_ids:
        try:
            analysis = engine.analyze(experiment_id)
        except AbTestError:
            logger.exception(f"Failed to analyze experiment {experiment_id}")
            continue
        render_exec_summary(analysis.to_dict(), experiment_id, artifacts_dir=artifacts_dir)
        recommendations[experiment_id] = analysis.recommendation
    return recommendations


def run_daily_maintenance(
    engine: ExperimentEngine,
    artifacts_dir: Optional[str] = None,
) -> Dict[str, object]:
    """Reload active set, expire overdue experiments, report on the rest and the expired ones."""
    engine.load_active_experiments()
    completed = expire_overdue_experiments(engine)
    running = [e.id for e in engine.get_active_experiments()]
    recommendations = report_experiments(engine, running + completed, artifacts_dir)
    summary = {
        "running": running,
        "completed": completed,
        "recommendations": recommendations,
    }
    logger.info(f"Maintenance complete: {summary}")
    return summary
