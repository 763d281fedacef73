"""
Provider adapters: terraform, EKS/ECR through boto3, docker and kubectl.

Each adapter normalizes its tool's exit codes and output into values or the
typed errors of ``kudos_deploy.errors``.
"""
from .eks import EksAdapter
from .kubernetes import KubernetesAdapter
from .registry import RegistryAdapter
from .terraform import PlanSummary, TerraformAdapter

__all__ = ["EksAdapter", "KubernetesAdapter", "RegistryAdapter", "PlanSummary", "TerraformAdapter"]
