"""
Experiment Dashboard - A/B test admin console.

Streamlit app with pages: Experiments, Design, Simulate, Results.
"""

import json
import sys
from pathlib import Path

# Add project root
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

import pandas as pd
import streamlit as st

from src.abtesting import (
    AbTestError,
    EngineConfig,
    Experiment,
    ExperimentEngine,
    ExperimentStatus,
    FileExperimentStore,
    render_exec_summary,
)

st.set_page_config(page_title="A/B Test Console", page_icon="🧪", layout="wide")

st.markdown("""
<style>
    .recommendation-ship { background: #d5f5e3; padding: 12px; border-radius: 6px; }
    .recommendation-hold { background: #fdebd0; padding: 12px; border-radius: 6px; }
    .recommendation-iterate { background: #ebf5fb; padding: 12px; border-radius: 6px; }
</style>
""", unsafe_allow_html=True)

EXAMPLE_EXPERIMENT = {
    "id": "hero_cta_2026",
    "name": "Hero CTA copy",
    "description": "Consultation button copy on the landing page",
    "variants": [
        {"id": "control", "name": "Book a call", "weight": 50, "content": {"cta": "Book a call"}},
        {"id": "urgent", "name": "Get your free audit", "weight": 50, "content": {"cta": "Get your free audit"}},
    ],
    "targeting_rules": {"traffic": 100, "device_types": ["desktop", "mobile"]},
    "metrics": {"primary": "consultation_booked", "secondary": ["cta_click"]},
    "settings": {"confidence_level": 0.95, "min_detectable_effect": 0.1},
}


@st.cache_resource
def get_engine() -> ExperimentEngine:
    config = EngineConfig.from_env()
    if not Path(config.data_dir).is_absolute():
        config.data_dir = str(ROOT / config.data_dir)
    if not Path(config.artifacts_dir).is_absolute():
        config.artifacts_dir = str(ROOT / config.artifacts_dir)
    return ExperimentEngine(FileExperimentStore(config.data_dir), config=config)


def experiments_table(exps) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "id": e.id,
            "name": e.name,
            "status": e.status.value,
            "variants": ", ".join(f"{v.id} ({v.weight:g}%)" for v in e.variants),
            "traffic": e.targeting_rules.traffic,
            "primary metric": e.metrics.primary,
            "start": e.duration.start_date.strftime("%Y-%m-%d"),
        }
        for e in exps
    ])


def results_table(results) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "variant": r.variant_id,
            "participants": r.sample_size,
            "conversions": r.conversions,
            "rate": f"{r.conversion_rate * 100:.2f}%",
            "CI": f"[{r.confidence_interval.lower * 100:.2f}%, {r.confidence_interval.upper * 100:.2f}%]",
            "uplift": f"{r.uplift:+.1f}%",
            "p-value": round(r.p_value, 4),
            "significant": r.statistical_significance,
        }
        for r in results
    ])


def main():
    engine = get_engine()
    st.title("🧪 A/B Test Console")
    st.caption(f"Store: {engine.config.data_dir}")

    tab1, tab2, tab3, tab4 = st.tabs(["Experiments", "Design", "Simulate", "Results"])

    with tab1:
        st.header("Experiments")
        status_filter = st.selectbox("Status", ["all"] + [s.value for s in ExperimentStatus])
        exps = engine.list_experiments(None if status_filter == "all" else ExperimentStatus(status_filter))
        if exps:
            st.dataframe(experiments_table(exps), use_container_width=True)
            sel = st.selectbox("Experiment", [e.id for e in exps], key="lifecycle_exp")
            c1, c2, c3 = st.columns(3)
            actions = [
                (c1, "Start", engine.start_experiment),
                (c2, "Pause", engine.pause_experiment),
                (c3, "Complete", engine.complete_experiment),
            ]
            for col, label, action in actions:
                if col.button(label):
                    try:
                        exp = action(sel)
                        st.success(f"{exp.id} is now {exp.status.value}")
                    except AbTestError as e:
                        st.error(str(e))
        else:
            st.info("No experiments yet. Create one on the Design tab.")

    with tab2:
        st.header("Experiment Design")
        raw = st.text_area("Experiment JSON", json.dumps(EXAMPLE_EXPERIMENT, indent=2), height=360)
        if st.button("Create experiment"):
            try:
                exp_id = engine.create_experiment(Experiment.from_dict(json.loads(raw)))
                st.success(f"Created {exp_id} (draft)")
            except json.JSONDecodeError as e:
                st.error(f"Invalid JSON: {e}")
            except AbTestError as e:
                st.error(str(e))

        st.subheader("Power / MDE Calculator")
        baseline = st.number_input("Baseline conversion rate", 0.001, 0.99, 0.05, 0.005, format="%.3f")
        mde_rel = st.slider("Target MDE (relative)", 0.01, 0.5, 0.1, 0.01)
        confidence = st.selectbox("Confidence level", [0.9, 0.95, 0.99], index=1)
        try:
            from src.abtesting.stats import power_proportion, sample_size_proportion
            n_needed = sample_size_proportion(baseline, mde_rel, alpha=1 - confidence)
            st.info(f"Sample size needed per variant: **{n_needed:,}** (for 80% power, α={1 - confidence:.2f})")
            n_have = st.number_input("Participants per variant", 10, 10_000_000, 1000, 100)
            pw = power_proportion(baseline, mde_rel, int(n_have), alpha=1 - confidence)
            st.info(f"With {int(n_have):,}/variant, power: **{pw * 100:.1f}%**")
        except ValueError as e:
            st.warning(f"Power calc: {e}")

    with tab3:
        st.header("Simulate Traffic")
        active = [e.id for e in engine.get_active_experiments()]
        if not active:
            st.info("Start an experiment to simulate traffic.")
        else:
            sim_exp = st.selectbox("Active experiment", active)
            exp = engine.get_experiment(sim_exp)
            n_users = st.number_input("Visitors", 100, 100_000, 2000, 100)
            rates = {
                v.id: st.slider(f"Conversion rate: {v.id}", 0.0, 1.0, 0.1, 0.01, key=f"rate_{v.id}")
                for v in exp.variants
            }
            seed = st.number_input("Random seed", 0, 10_000, 42)
            if st.button("Run Simulation"):
                with st.spinner("Running..."):
                    from src.abtesting.simulate import run_simulation
                    res = run_simulation(
                        engine, sim_exp, n_users=int(n_users), conversion_rates=rates,
                        user_prefix=f"sim_{seed}", random_seed=int(seed),
                    )
                st.success(f"Done! Assigned {res['n_assigned']}, excluded {res['n_excluded']}")
                st.json(res)

    with tab4:
        st.header("Results")
        all_ids = [e.id for e in engine.list_experiments()]
        sel_exp = st.selectbox("Select experiment", ["---"] + all_ids, key="results_exp")

        if sel_exp and sel_exp != "---":
            try:
                analysis = engine.analyze(sel_exp)
            except AbTestError as e:
                st.error(str(e))
                return

            c1, c2, c3 = st.columns(3)
            c1.metric("SRM", "✓ Pass" if analysis.srm_passed else "✗ Fail")
            c2.metric("Participants", sum(r.sample_size for r in analysis.results))
            c3.metric(
                "Required / variant",
                f"{analysis.required_sample_size:,}" if analysis.required_sample_size else "—",
            )
            st.dataframe(results_table(analysis.results), use_container_width=True)

            chart = pd.DataFrame(
                {"conversion rate": [r.conversion_rate for r in analysis.results]},
                index=[r.variant_id for r in analysis.results],
            )
            st.bar_chart(chart)

            rec = analysis.recommendation
            css = {"ship": "recommendation-ship", "hold": "recommendation-hold", "iterate": "recommendation-iterate"}
            st.markdown(
                f'<div class="{css.get(rec, "recommendation-iterate")}"><b>{rec.upper()}</b>: '
                f'{analysis.recommendation_reason}</div>',
                unsafe_allow_html=True,
            )

            if st.button("Write executive summary"):
                out = render_exec_summary(
                    analysis.to_dict(), sel_exp, artifacts_dir=engine.config.artifacts_dir,
                )
                st.success(f"Saved {out}")


if __name__ == "__main__":
    main()
