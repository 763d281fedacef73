from .poller import CheckResult, PollResult, ReadinessPoller

__all__ = ["CheckResult", "PollResult", "ReadinessPoller"]
