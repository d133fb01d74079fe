import json

from job_harvest.diagnostics import ExtractionDiagnostics, write_diagnostics
from job_harvest.main import write_results
from job_harvest.models import ExtractionResult, ExtractionStatus, JobRecord, SourceStrategy, StrategyOutcome


def test_diagnostics_track_phases_and_counters():
    diagnostics = ExtractionDiagnostics(account_id="hr-1")
    diagnostics.enter_phase("settling")
    diagnostics.inc("jobs", 3)
    diagnostics.inc("jobs")
    diagnostics.set_gauge("ready", True)
    diagnostics.record_strategy(StrategyOutcome(strategy=SourceStrategy.DOM, error="no_records"))
    diagnostics.record_strategy(StrategyOutcome(strategy=SourceStrategy.AI_TEXT, record_count=2))
    diagnostics.finish()

    payload = diagnostics.to_dict()

    assert payload["account_id"] == "hr-1"
    assert payload["last_phase"] == "settling"
    assert set(payload["phase_ms"]) == {"idle", "settling"}
    assert payload["counters"] == {"jobs": 4, "strategies_attempted": 2, "strategy_failures": 1}
    assert payload["gauges"] == {"ready": True}
    assert [e["kind"] for e in payload["events"]] == ["phase", "strategy", "strategy"]
    assert payload["events"][1]["error"] == "no_records"
    assert "error" not in payload["events"][2]
    assert all(e["at_ms"] >= 0 for e in payload["events"])


def test_reentering_the_same_phase_is_a_no_op():
    diagnostics = ExtractionDiagnostics(account_id="hr-1")
    diagnostics.enter_phase("attempting")
    diagnostics.enter_phase("attempting")
    assert [e["name"] for e in diagnostics.events] == ["attempting"]


def test_write_diagnostics_renders_template(tmp_path):
    template = str(tmp_path / "diag_{timestamp}.json")
    path = write_diagnostics([{"account_id": "hr-1"}], template)

    assert path.parent == tmp_path
    assert "{timestamp}" not in path.name
    assert json.loads(path.read_text(encoding="utf-8")) == [{"account_id": "hr-1"}]


def test_write_results_omits_diagnostics(tmp_path):
    result = ExtractionResult(
        account_id="hr-1",
        status=ExtractionStatus.SUCCESS,
        jobs=[JobRecord(platform_job_id="j1", title="算法工程师", source_strategy=SourceStrategy.DOM)],
        diagnostics={"counters": {"jobs": 1}},
    )

    path = write_results([result], tmp_path / "out" / "jobs.json")
    payload = json.loads(path.read_text(encoding="utf-8"))

    assert payload[0]["status"] == "success"
    assert payload[0]["jobs"][0]["title"] == "算法工程师"
    assert payload[0]["jobs"][0]["source_strategy"] == "dom"
    assert "diagnostics" not in payload[0]
