from .run_report import Phase, PhaseStatus, ResourceState, RunReport, RunStatus

__all__ = ["Phase", "PhaseStatus", "ResourceState", "RunReport", "RunStatus"]
