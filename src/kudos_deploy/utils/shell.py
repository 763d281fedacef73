"""Subprocess wrapper shared by the terraform, aws, docker and kubectl adapters."""
import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from kudos_deploy.errors import CommandError

logger = logging.getLogger(__name__)

# Output fragments that mark a failure as worth retrying
TRANSIENT_PATTERNS = [
    r"timed? ?out",
    r"timeout",
    r"connection (reset|refused)",
    r"temporary failure in name resolution",
    r"tls handshake",
    r"i/o timeout",
    r"unexpected eof",
    r"throttl",
    r"rate exceeded",
    r"requestlimitexceeded",
    r"too many requests",
    r"service unavailable",
    r"\b50[234]\b",
    r"authorization token has expired",
    r"no basic auth credentials",
    r"error acquiring the state lock",
    r"the object has been modified",
    r"unable to connect to the server",
]
_TRANSIENT_RE = re.compile("|".join(TRANSIENT_PATTERNS), re.IGNORECASE)


def classify_failure(output: str) -> bool:
    """Return True when the CLI output describes a transient failure."""
    return bool(output and _TRANSIENT_RE.search(output))


@dataclass
class CommandResult:
    """Normalized outcome of one CLI invocation."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def to_dict(self) -> Dict[str, object]:
        return {
            "command": " ".join(self.args),
            "returncode": self.returncode,
            "stderr": self.stderr[-2000:],
            "duration": round(self.duration, 2),
        }


class CommandRunner:
    """Runs external commands and turns failures into ``CommandError``."""

    def __init__(self, env: Optional[Dict[str, str]] = None, timeout: float = 3600.0):
        self.env = dict(env or {})
        self.timeout = timeout

    def with_env(self, **extra: str) -> "CommandRunner":
        """Copy of this runner with extra environment variables."""
        merged = dict(self.env)
        merged.update(extra)
        return CommandRunner(env=merged, timeout=self.timeout)

    def run(self, args: Sequence[str], cwd: Optional[str] = None,
            input: Optional[str] = None, timeout: Optional[float] = None,
            check: bool = True, ok_codes: Sequence[int] = (0,),
            env: Optional[Dict[str, str]] = None) -> CommandResult:
        """Run a command, capturing its output.

        Args:
            args: Command and arguments
            cwd: Working directory
            input: Text passed on stdin
            timeout: Seconds before the command is killed
            check: Raise CommandError when the exit code is not in ok_codes
            ok_codes: Exit codes that count as success
            env: Extra environment variables for this call only

        Returns:
            CommandResult with captured stdout/stderr
        """
        args = [str(a) for a in args]
        call_env = os.environ.copy()
        call_env.update(self.env)
        if env:
            call_env.update(env)

        logger.debug(f"Running: {' '.join(args)}")
        start_time = time.time()
        try:
            completed = subprocess.run(
                args,
                cwd=cwd,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
                env=call_env,
                # Own session: a terminal Ctrl-C reaches only this process
                start_new_session=True,
            )
        except FileNotFoundError as e:
            result = CommandResult(args=args, returncode=127, stderr=str(e),
                                   duration=time.time() - start_time)
            raise CommandError(f"Command not found: {args[0]}", result=result) from e
        except subprocess.TimeoutExpired as e:
            result = CommandResult(args=args, returncode=-1, stderr=f"timed out after {e.timeout}s",
                                   duration=time.time() - start_time)
            raise CommandError(f"{args[0]} timed out after {e.timeout}s", result=result,
                               transient=True) from e

        result = CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.time() - start_time,
        )

        if check and result.returncode not in ok_codes:
            transient = classify_failure(result.stderr or result.stdout)
            message = (result.stderr or result.stdout).strip().splitlines()
            summary = message[-1] if message else f"exit code {result.returncode}"
            logger.debug(f"{args[0]} failed ({result.returncode}): {result.stderr}")
            raise CommandError(f"{' '.join(args[:2])} failed: {summary}", result=result,
                               transient=transient)

        return result
