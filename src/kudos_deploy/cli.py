# cli.py
import json
import logging
import sys
from pathlib import Path

import click

from kudos_deploy.adapters import EksAdapter, KubernetesAdapter, RegistryAdapter, TerraformAdapter
from kudos_deploy.config.settings import get_settings
from kudos_deploy.models import DeploymentRequest
from kudos_deploy.orchestration import (
    CancellationToken,
    DeploymentOrchestrator,
    TeardownOrchestrator,
    collect_status,
)
from kudos_deploy.utils.shell import CommandRunner

logger = logging.getLogger(__name__)


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_adapters(settings, region: str, terraform_dir: str):
    """Wire the provider adapters to one shared command runner."""
    env = {"AWS_DEFAULT_REGION": region}
    if settings.aws_profile:
        env["AWS_PROFILE"] = settings.aws_profile
    runner = CommandRunner(env=env, timeout=settings.command_timeout)

    kube = KubernetesAdapter(runner)
    return {
        "terraform": TerraformAdapter(terraform_dir, runner=runner, lock_timeout=settings.terraform_lock_timeout),
        "eks": EksAdapter(runner=runner, kube=kube),
        "registry": RegistryAdapter(region, runner=runner, dockerfile=settings.dockerfile,
                                    push_attempts=settings.push_attempts,
                                    push_backoff=settings.push_backoff_seconds),
        "kube": kube,
    }


def request_options(func):
    """Options shared by every verb that targets an environment."""
    settings = get_settings()
    options = [
        click.option("--app-name", default=settings.app_name, show_default=True, help="Application name"),
        click.option("--environment", default=settings.environment, show_default=True, help="Target environment"),
        click.option("--region", default=settings.aws_region, show_default=True, help="AWS region"),
        click.option("--replicas", type=int, default=settings.replicas, show_default=True,
                     help="Workload replica count"),
        click.option("--min-nodes", type=int, default=settings.min_nodes, show_default=True,
                     help="Minimum worker nodes"),
        click.option("--max-nodes", type=int, default=settings.max_nodes, show_default=True,
                     help="Maximum worker nodes"),
        click.option("--terraform-dir", default=settings.terraform_dir, show_default=True,
                     type=click.Path(file_okay=False), help="Terraform configuration directory"),
        click.option("--report-file", default=None, type=click.Path(dir_okay=False),
                     help="Write the run report as JSON"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _make_request(**kwargs) -> DeploymentRequest:
    try:
        return DeploymentRequest(**kwargs)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _confirm_plan(summary) -> bool:
    click.echo(f"Terraform plan: {summary.describe()}")
    for address in summary.network_replacements:
        click.echo(f"  ! network resource replaced or deleted: {address}")
    return click.confirm("Apply these infrastructure changes?", default=False)


def _finish(report, report_file):
    click.echo(report.render())
    if report_file:
        report.save(report_file)
    sys.exit(report.exit_code)


def _cancel_token() -> CancellationToken:
    token = CancellationToken()
    token.install_signal_handler()
    return token


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level):
    """Provision EKS, ship the app image and roll it out."""
    _configure_logging((log_level or get_settings().log_level).upper())


@cli.command()
@request_options
@click.option("--yes", is_flag=True, help="Apply infrastructure changes without asking")
@click.option("--allow-network-changes", is_flag=True, help="Permit replacing or deleting network resources")
def provision(app_name, environment, region, replicas, min_nodes, max_nodes, terraform_dir, report_file,
              yes, allow_network_changes):
    """Create or converge the cluster and registry"""
    settings = get_settings()
    request = _make_request(app_name=app_name, environment=environment, region=region, replicas=replicas,
                            min_nodes=min_nodes, max_nodes=max_nodes,
                            allow_network_changes=allow_network_changes)
    adapters = build_adapters(settings, region, terraform_dir)
    orchestrator = DeploymentOrchestrator(
        settings, adapters["terraform"], adapters["eks"], None, adapters["kube"],
        cancel_token=_cancel_token(), confirm=None if yes else _confirm_plan,
    )
    _finish(orchestrator.provision(request), report_file)


@cli.command()
@request_options
@click.option("--build-context", default=get_settings().build_context, show_default=True,
              type=click.Path(file_okay=False), help="Directory with the Dockerfile")
@click.option("--registry", default=None, help="Registry URL; defaults to the provisioned ECR repository")
@click.option("--image-tag", default=None, help="Image tag; defaults to the git short SHA")
@click.option("--allow-network-changes", is_flag=True, help="Permit replacing or deleting network resources")
@click.option("--yes", is_flag=True, help="Apply infrastructure changes without asking")
def deploy(app_name, environment, region, replicas, min_nodes, max_nodes, terraform_dir, report_file,
           build_context, registry, image_tag, allow_network_changes, yes):
    """Provision, build, push and roll out the app"""
    settings = get_settings()
    request = _make_request(app_name=app_name, environment=environment, region=region, replicas=replicas,
                            min_nodes=min_nodes, max_nodes=max_nodes, build_context=build_context,
                            registry=registry, image_tag=image_tag,
                            allow_network_changes=allow_network_changes)
    adapters = build_adapters(settings, region, terraform_dir)
    orchestrator = DeploymentOrchestrator(
        settings, adapters["terraform"], adapters["eks"], adapters["registry"], adapters["kube"],
        cancel_token=_cancel_token(), confirm=None if yes else _confirm_plan,
    )
    _finish(orchestrator.deploy(request), report_file)


@cli.command()
@request_options
@click.option("--yes", is_flag=True, help="Destroy without asking")
def destroy(app_name, environment, region, replicas, min_nodes, max_nodes, terraform_dir, report_file, yes):
    """Remove the workload and every provisioned resource"""
    settings = get_settings()
    request = _make_request(app_name=app_name, environment=environment, region=region, replicas=replicas,
                            min_nodes=min_nodes, max_nodes=max_nodes)
    if not yes:
        click.echo(f"⚠️  This will destroy ALL resources of {request.resource_prefix} in {region}.")
        click.confirm("Are you sure?", default=False, abort=True)

    adapters = build_adapters(settings, region, terraform_dir)
    orchestrator = TeardownOrchestrator(settings, adapters["terraform"], adapters["eks"], adapters["kube"],
                                        cancel_token=_cancel_token())
    _finish(orchestrator.destroy(request), report_file)


@cli.command()
@request_options
def status(app_name, environment, region, replicas, min_nodes, max_nodes, terraform_dir, report_file):
    """Summarise cluster, deployment and endpoint"""
    settings = get_settings()
    request = _make_request(app_name=app_name, environment=environment, region=region, replicas=replicas,
                            min_nodes=min_nodes, max_nodes=max_nodes)
    adapters = build_adapters(settings, region, terraform_dir)
    result = collect_status(request, adapters["terraform"], adapters["eks"], adapters["kube"])

    text = json.dumps(result, indent=2, default=str)
    click.echo(text)
    if report_file:
        Path(report_file).write_text(text)
    sys.exit(1 if result["errors"] else 0)


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    for key, value in settings.get_environment_dict().items():
        print(f"  {key}: {value}")
    print(f"  Resource Prefix: {settings.resource_prefix}")
    print(f"  Lock Directory: {settings.lock_dir}")
    print(f"  Rollout/Endpoint/HTTP Timeouts: "
          f"{settings.rollout_timeout:.0f}s/{settings.endpoint_timeout:.0f}s/{settings.http_timeout:.0f}s")


def main():
    cli()


if __name__ == "__main__":
    main()
