"""Local side of the VCS host: git checkouts, shell commands, event intake.

LocalWorkspace runs git and shell commands in a working directory with
subprocess. EnvironmentEventSource reads the triggering event the way
the Actions runner exposes it (``GITHUB_EVENT_NAME``, ``GITHUB_EVENT_PATH``,
``GITHUB_ACTOR``).
"""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import time
from collections.abc import Mapping
from pathlib import Path

from gatehouse.exceptions import ActionExecutionError, ActionTimeoutError, HostError
from gatehouse.protocols import CommandResult, RawEvent, WorkingTree

logger = logging.getLogger(__name__)


class LocalWorkspace:
    """Git checkouts and shell commands in ``workdir``.

    Read-only checkouts disable pushing by pointing the push URL of
    ``origin`` at an invalid location.
    """

    def __init__(self, workdir: str | Path = ".", *, remote: str = "origin") -> None:
        self._workdir = Path(workdir)
        self._remote = remote

    @property
    def workdir(self) -> Path:
        return self._workdir

    def checkout_ref(
        self,
        ref: str,
        *,
        writable: bool = False,
        fetch_depth: int | None = None,
        timeout: float | None = None,
    ) -> WorkingTree:
        """Fetch ``ref`` from the remote and check it out detached.

        ``fetch_depth`` N > 0 fetches N commits; 0 fetches full history,
        unshallowing a shallow clone; None leaves the depth alone.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            sha = self._checkout(ref, writable, fetch_depth, deadline)
        except subprocess.TimeoutExpired:
            raise ActionTimeoutError("checkout", timeout or 0.0) from None
        logger.debug("Checked out %s at %s (writable=%s)", ref, sha[:8], writable)
        return WorkingTree(path=str(self._workdir), ref=ref, sha=sha, writable=writable)

    def _checkout(
        self,
        ref: str,
        writable: bool,
        fetch_depth: int | None,
        deadline: float | None,
    ) -> str:
        if ref != "HEAD":
            fetch = ["git", "fetch"]
            if fetch_depth:
                fetch.append(f"--depth={fetch_depth}")
            elif fetch_depth == 0 and self._is_shallow(deadline):
                fetch.append("--unshallow")
            self._git([*fetch, self._remote, ref], deadline)
            self._git(["git", "checkout", "--detach", "FETCH_HEAD"], deadline)
        push_url = self._git(["git", "remote", "get-url", self._remote], deadline).stdout.strip()
        self._git([
            "git", "remote", "set-url", "--push", self._remote,
            push_url if writable else "no-push://read-only",
        ], deadline)
        return self._git(["git", "rev-parse", "HEAD"], deadline).stdout.strip()

    def run_command(
        self,
        cmd: str,
        env: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``cmd`` through the shell in its own process group.

        Raises:
            ActionTimeoutError: If ``timeout`` expires. The whole process
                group is killed first, so no child outlives the step.
        """
        merged_env = dict(os.environ)
        if env:
            merged_env.update(env)
        logger.debug("Running command in %s: %s", self._workdir, cmd)
        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=self._workdir,
            env=merged_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            proc.communicate()
            raise ActionTimeoutError("run_command", timeout) from None
        return CommandResult(exit_code=proc.returncode, stdout=stdout, stderr=stderr)

    def _is_shallow(self, deadline: float | None) -> bool:
        result = self._git(["git", "rev-parse", "--is-shallow-repository"], deadline)
        return result.stdout.strip() == "true"

    def _git(self, args: list[str], deadline: float | None = None) -> CommandResult:
        remaining = None
        if deadline is not None:
            remaining = max(deadline - time.monotonic(), 0.0)
        proc = subprocess.run(
            args,
            cwd=self._workdir,
            capture_output=True,
            text=True,
            check=False,
            timeout=remaining,
        )
        if proc.returncode != 0:
            raise ActionExecutionError(
                "checkout", f"{' '.join(args[:2])} failed: {proc.stderr.strip()}"
            )
        return CommandResult(exit_code=0, stdout=proc.stdout, stderr=proc.stderr)


def _kill_group(proc: subprocess.Popen) -> None:
    """SIGKILL the process group started for ``proc``."""
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except (ProcessLookupError, OSError) as exc:
        logger.debug("Process group cleanup failed: %s", exc)
        proc.kill()


class EnvironmentEventSource:
    """Reads the triggering event from the Actions runner environment.

    The runner is a trusted delivery context, so events read here are
    marked verified and carry the runner-supplied actor.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def fetch_event(self) -> RawEvent:
        """Read the event named by ``GITHUB_EVENT_NAME`` from ``GITHUB_EVENT_PATH``.

        Raises:
            HostError: If either variable is unset or the file is unreadable.
        """
        event_name = self._environ.get("GITHUB_EVENT_NAME")
        event_path = self._environ.get("GITHUB_EVENT_PATH")
        if not event_name or not event_path:
            raise HostError("GITHUB_EVENT_NAME and GITHUB_EVENT_PATH must be set")
        try:
            with open(event_path, encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise HostError(f"Cannot read event payload {event_path}: {exc}") from exc
        return RawEvent(
            event_name=event_name,
            payload=payload,
            actor=self._environ.get("GITHUB_ACTOR") or None,
            verified=bool(self._environ.get("GITHUB_ACTOR")),
            delivery_id=self._environ.get("GITHUB_RUN_ID") or None,
        )
