"""
Experiment Maintenance DAG - Daily A/B test housekeeping.

Reloads the active set from data/experiments/, completes experiments past
their end date or maximum duration, renders analysis.json + exec_summary.html
for running and just-completed experiments into artifacts/experiments/.
"""

from datetime import datetime, timedelta
from pathlib import Path

from airflow import DAG
from airflow.operators.python import PythonOperator

# Project root - adjust if DAG runs from different location
PROJECT_ROOT = Path(__file__).parent.parent


def _build_engine():
    import sys
    sys.path.insert(0, str(PROJECT_ROOT))

    from src.abtesting import EngineConfig, ExperimentEngine, FileExperimentStore

    config = EngineConfig.from_env()
    if not Path(config.data_dir).is_absolute():
        config.data_dir = str(PROJECT_ROOT / config.data_dir)
    if not Path(config.artifacts_dir).is_absolute():
        config.artifacts_dir = str(PROJECT_ROOT / config.artifacts_dir)
    return ExperimentEngine(FileExperimentStore(config.data_dir), config=config)


def _expire_overdue(**kwargs):
    """Complete overdue experiments."""
    from src.abtesting.maintenance import expire_overdue_experiments

    engine = _build_engine()
    return expire_overdue_experiments(engine)


def _report(**kwargs):
    """Analyze running experiments plus the ones completed by the previous task."""
    from src.abtesting.maintenance import report_experiments

    engine = _build_engine()
    ti = kwargs.get("ti")
    completed = (ti.xcom_pull(task_ids="expire_overdue_experiments") if ti else None) or []
    running = [e.id for e in engine.get_active_experiments()]
    ids = running + [c for c in completed if c not in running]
    if not ids:
        return {"status": "skipped", "reason": "no running experiments"}
    return report_experiments(engine, ids)


default_args = {
    "owner": "growth",
    "depends_on_past": False,
    "start_date": datetime(2026, 1, 1),
    "email_on_failure": False,
    "retries": 1,
    "retry_delay": timedelta(minutes=5),
}

dag = DAG(
    "experiment_maintenance_daily",
    default_args=default_args,
    description="Daily A/B test maintenance: expire overdue + report",
    schedule="0 6 * * *",  # 6 AM daily
    max_active_runs=1,
    tags=["experiment", "ab-test"],
)

expire_task = PythonOperator(
    task_id="expire_overdue_experiments",
    python_callable=_expire_overdue,
    dag=dag,
)

report_task = PythonOperator(
    task_id="report_experiments",
    python_callable=_report,
    dag=dag,
)

expire_task >> report_task
