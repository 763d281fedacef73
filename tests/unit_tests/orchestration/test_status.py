from kudos_deploy.errors import AuthError
from kudos_deploy.models import DeploymentRequest, ImageReference, WorkloadSpec
from kudos_deploy.orchestration import collect_status
from tests.fixtures.fake_adapters import FakeEks, FakeKube, FakeTerraform

REQUEST = DeploymentRequest(app_name="demo", environment="dev", region="us-east-1")


def test_status_without_infrastructure():
    status = collect_status(REQUEST, FakeTerraform(), FakeEks(), FakeKube())

    assert status["infrastructure"] is None
    assert status["errors"] == []


def test_status_of_running_deployment():
    terraform = FakeTerraform()
    terraform.exists = True
    kube = FakeKube()
    kube.applied.append(WorkloadSpec(name="demo", namespace="demo-dev",
                                     image=ImageReference("demo", "abc123"), replicas=2))

    status = collect_status(REQUEST, terraform, FakeEks(), kube)

    assert status["cluster"]["status"] == "ACTIVE"
    assert status["deployment"]["complete"]
    assert status["endpoint"] == "http://demo.dev.example.com"


def test_status_reports_errors_instead_of_raising():
    terraform = FakeTerraform()
    terraform.exists = True

    status = collect_status(REQUEST, terraform, FakeEks(auth_error=AuthError("Unauthorized")), FakeKube())

    assert status["cluster"]["status"] == "ACTIVE"
    assert status["errors"][0]["kind"] == "auth"
