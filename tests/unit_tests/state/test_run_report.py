import json

import pytest

from kudos_deploy.errors import BuildError
from kudos_deploy.state import Phase, PhaseStatus, ResourceState, RunReport, RunStatus
from kudos_deploy.state.run_report import ReportFrozenError


class TickingClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        self.now += 1.0
        return self.now


@pytest.fixture
def report():
    return RunReport("deploy", "demo-dev", clock=TickingClock())


def test_phases_recorded_in_order(report):
    report.start_phase(Phase.PROVISIONING)
    report.note(detail="cluster demo-dev", attempts=2)
    report.complete_phase()
    report.start_phase(Phase.AUTHENTICATING)
    report.complete_phase()

    assert [p.phase for p in report.phases] == [Phase.PROVISIONING, Phase.AUTHENTICATING]
    assert report.phases[0].attempts == 2
    assert report.phases[0].duration > 0
    assert report.last_completed_phase == Phase.AUTHENTICATING


def test_failed_phase_records_error_and_next_action(report):
    report.start_phase(Phase.BUILDING)
    report.fail_phase(BuildError("docker build failed"))
    report.emit(RunStatus.FAILED)

    data = report.to_dict()
    assert data["failed_phase"] == "BUILDING"
    assert data["error"]["kind"] == "build"
    assert data["status"] == "FAILED"
    assert data["exit_code"] == 1
    assert "Fix the container build" in data["next_action"]


def test_report_frozen_after_emit(report):
    report.start_phase(Phase.PROVISIONING)
    report.complete_phase()
    report.emit(RunStatus.SUCCEEDED)

    with pytest.raises(ReportFrozenError):
        report.start_phase(Phase.BUILDING)
    with pytest.raises(ReportFrozenError):
        report.set_endpoint("http://x")
    with pytest.raises(ReportFrozenError):
        report.emit(RunStatus.FAILED)
    assert report.status == RunStatus.SUCCEEDED


def test_emit_closes_open_phase(report):
    report.start_phase(Phase.APPLYING)
    report.emit(RunStatus.CANCELLED)

    assert report.phases[0].status == PhaseStatus.SKIPPED
    assert report.exit_code == 130


@pytest.mark.parametrize("status,code", [
    (RunStatus.SUCCEEDED, 0),
    (RunStatus.DESTROYED, 0),
    (RunStatus.FAILED, 1),
    (RunStatus.DEGRADED, 3),
    (RunStatus.CANCELLED, 130),
])
def test_exit_codes(report, status, code):
    assert report.emit(status).exit_code == code


def test_mark_state_and_render(report):
    report.start_phase(Phase.AWAITING_READY)
    report.set_endpoint("http://demo.dev.example.com")
    report.mark_state(infrastructure=ResourceState.PRESENT, workload="present")
    report.complete_phase(PhaseStatus.SUCCEEDED)
    report.emit(RunStatus.SUCCEEDED)

    text = report.render()
    assert "DEPLOY demo-dev: SUCCEEDED" in text
    assert "http://demo.dev.example.com" in text
    assert "Infrastructure: present" in text
    assert report.workload_state == ResourceState.PRESENT


def test_save_writes_json(report, tmp_path):
    report.emit(RunStatus.DESTROYED)

    path = report.save(str(tmp_path / "out" / "report.json"))

    data = json.loads(path.read_text())
    assert data["verb"] == "deploy"
    assert data["infrastructure"] == "unknown"
