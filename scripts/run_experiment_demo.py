#!/usr/bin/env python3
"""
Run full experiment demo: create -> start -> simulate -> analyze -> report.

Creates artifacts/experiments/<id>/analysis.json and exec_summary.html.
"""

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

DEMO_EXPERIMENT = {
    "id": "demo_hero_cta",
    "name": "Hero CTA demo",
    "description": "Synthetic traffic through a three-way CTA test",
    "variants": [
        {"id": "control", "name": "Book a call", "weight": 34, "content": {"cta": "Book a call"}},
        {"id": "audit", "name": "Free audit", "weight": 33, "content": {"cta": "Get your free audit"}},
        {"id": "quote", "name": "Instant quote", "weight": 33, "content": {"cta": "Get an instant quote"}},
    ],
    "targeting_rules": {"traffic": 100},
    "metrics": {"primary": "consultation_booked"},
    "settings": {"confidence_level": 0.95, "min_detectable_effect": 0.2},
}


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    from src.abtesting import (
        EngineConfig,
        Experiment,
        ExperimentEngine,
        ExperimentNotFound,
        FileExperimentStore,
        InMemoryExperimentStore,
        render_exec_summary,
    )
    from src.abtesting.simulate import run_simulation

    experiment_id = DEMO_EXPERIMENT["id"]
    artifacts_dir = ROOT / "artifacts" / "experiments"
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    persist = "--persist" in sys.argv
    config = EngineConfig(data_dir=str(ROOT / "data" / "experiments"), artifacts_dir=str(artifacts_dir))
    store = FileExperimentStore(config.data_dir) if persist else InMemoryExperimentStore()
    engine = ExperimentEngine(store, config=config)

    print("1. Creating and starting experiment...")
    try:
        engine.get_experiment(experiment_id)
        print(f"   {experiment_id} already exists, reusing it")
    except ExperimentNotFound:
        engine.create_experiment(Experiment.from_dict(DEMO_EXPERIMENT))
    if not engine.is_active(experiment_id):
        engine.start_experiment(experiment_id)

    print("2. Running traffic simulation...")
    summary = run_simulation(
        engine,
        experiment_id,
        n_users=6000,
        conversion_rates={"control": 0.10, "audit": 0.13, "quote": 0.095},
    )
    print(f"   Assigned: {summary['assigned']}, conversions: {summary['conversions']}")

    print("3. Running analysis...")
    analysis = engine.analyze(experiment_id)
    for r in analysis.results:
        print(
            f"   {r.variant_id:>8}: n={r.sample_size:5d} rate={r.conversion_rate:.4f} "
            f"uplift={r.uplift:+.1f}% p={r.p_value:.4f}"
        )
    print(f"   Recommendation: {analysis.recommendation.upper()} - {analysis.recommendation_reason}")

    print("4. Generating executive summary...")
    render_exec_summary(analysis.to_dict(), experiment_id, artifacts_dir=str(artifacts_dir))

    out_dir = artifacts_dir / experiment_id
    print(f"\n[OK] Demo complete. Artifacts in {out_dir}:")
    for f in sorted(out_dir.iterdir()):
        print(f"   - {f.name}")


if __name__ == "__main__":
    main()
