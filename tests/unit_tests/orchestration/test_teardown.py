import pytest

from kudos_deploy.config.settings import Settings
from kudos_deploy.errors import ApplyError, AuthError, DestroyError
from kudos_deploy.models import DeploymentRequest
from kudos_deploy.orchestration import TeardownOrchestrator
from kudos_deploy.state import Phase, PhaseStatus, ResourceState, RunStatus
from tests.fixtures.fake_adapters import FakeEks, FakeKube, FakeTerraform

REQUEST = DeploymentRequest(app_name="demo", environment="dev", region="us-east-1")


@pytest.fixture
def settings(tmp_path):
    return Settings(lock_dir=str(tmp_path / "locks"))


@pytest.fixture
def terraform():
    fake = FakeTerraform()
    fake.exists = True
    return fake


def _teardown(settings, terraform, eks, kube, poller):
    return TeardownOrchestrator(settings, terraform, eks, kube, poller=poller, check_prerequisites=False)


def test_destroy_drains_then_destroys(settings, terraform, fake_poller):
    kube = FakeKube()

    report = _teardown(settings, terraform, FakeEks(), kube, fake_poller).destroy(REQUEST)

    assert report.status == RunStatus.DESTROYED
    assert report.exit_code == 0
    assert [(p.phase, p.status) for p in report.phases] == [
        (Phase.DRAINING, PhaseStatus.SUCCEEDED),
        (Phase.DESTROYING, PhaseStatus.SUCCEEDED),
    ]
    assert kube.deleted == ["demo-dev"]
    assert report.phases[1].observations["resources_destroyed"] == 3
    assert report.infrastructure_state == ResourceState.ABSENT


def test_destroy_twice_second_reports_zero(settings, terraform, fake_poller):
    orchestrator = _teardown(settings, terraform, FakeEks(), FakeKube(), fake_poller)

    orchestrator.destroy(REQUEST)
    second = orchestrator.destroy(REQUEST)

    assert second.status == RunStatus.DESTROYED
    assert second.phases[0].status == PhaseStatus.SKIPPED
    assert second.phases[1].observations["resources_destroyed"] == 0


def test_drain_failure_never_fails_teardown(settings, terraform, fake_poller):
    kube = FakeKube()
    kube.delete_error = ApplyError("connection refused", transient=True)

    report = _teardown(settings, terraform, FakeEks(), kube, fake_poller).destroy(REQUEST)

    assert report.status == RunStatus.DESTROYED
    assert report.phases[0].status == PhaseStatus.SKIPPED
    assert "workload removal failed" in report.phases[0].detail
    assert terraform.destroy_calls == 1


def test_drain_auth_failure_never_fails_teardown(settings, terraform, fake_poller):
    eks = FakeEks(auth_error=AuthError("Unauthorized"))

    report = _teardown(settings, terraform, eks, FakeKube(), fake_poller).destroy(REQUEST)

    assert report.status == RunStatus.DESTROYED


def test_load_balancer_not_released_still_destroys(settings, terraform, fake_poller):
    kube = FakeKube()
    kube.delete_workload = lambda handle, app, namespace: 0

    report = _teardown(settings, terraform, FakeEks(), kube, fake_poller).destroy(REQUEST)

    assert report.status == RunStatus.DESTROYED
    assert "not confirmed released" in report.phases[0].detail


def test_destroy_failure_is_failed(settings, terraform, fake_poller):
    terraform.destroy_error = DestroyError("DependencyViolation")

    report = _teardown(settings, terraform, FakeEks(), FakeKube(), fake_poller).destroy(REQUEST)

    assert report.status == RunStatus.FAILED
    assert report.failed_phase == Phase.DESTROYING
    assert report.infrastructure_state == ResourceState.PARTIAL
    assert "retry 'destroy'" in report.next_action
