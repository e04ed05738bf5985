"""
Supervised process execution.

Commands go through run_supervised() and Python tool code goes through
run_in_child(). Either way the work runs in a child started in its own
session (and therefore its own process group) so that on timeout the whole
tree can be signalled at once: SIGTERM first, then SIGKILL after a short
grace period. Command output is captured into an anonymous temporary file,
which the OS reclaims on every exit path.

This module is POSIX only.
"""

import logging
import multiprocessing
import os
import signal
import subprocess
import tempfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class ChildError(Exception):
    """The function run by run_in_child() raised or never returned."""

    def __init__(self, error_type: str, message: str) -> None:
        super().__init__(f"{error_type}: {message}")
        self.error_type = error_type


@dataclass
class ProcessOutcome:
    """Result of one supervised process run."""
    output: str
    exit_code: int
    timed_out: bool = False


def _signal_group(pgid: int, sig: signal.Signals) -> bool:
    """Send ``sig`` to a process group. Returns False if the group is gone."""
    try:
        os.killpg(pgid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        logger.warning(f"Not permitted to signal process group {pgid}")
        return False


def terminate_process_group(process: subprocess.Popen, grace: float = 0.2) -> None:
    """
    Terminate ``process`` and every descendant sharing its process group.

    Sends SIGTERM, waits up to ``grace`` seconds for the leader, then
    SIGKILLs whatever is left of the group.
    """
    pgid = process.pid
    if _signal_group(pgid, signal.SIGTERM):
        try:
            process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            pass
    _signal_group(pgid, signal.SIGKILL)
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        logger.error(f"Process {process.pid} did not exit after SIGKILL")


def run_supervised(
    args: str | Sequence[str],
    *,
    timeout: float,
    shell: bool = False,
    cwd: str | os.PathLike | None = None,
    env: Mapping[str, str] | None = None,
    kill_grace: float = 0.2,
) -> ProcessOutcome:
    """
    Run a command to completion or until ``timeout`` seconds elapse.

    stdout and stderr are combined. On timeout the process group is killed
    and the outcome carries exit code 124 with ``timed_out=True``. Any
    descendants left running after a normal exit are killed as well, so no
    orphans outlive the call.

    Raises:
        OSError: If the command cannot be started at all
    """
    with tempfile.TemporaryFile() as out:
        process = subprocess.Popen(
            args,
            shell=shell,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

        timed_out = False
        try:
            exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout} seconds, terminating...")
            terminate_process_group(process, kill_grace)
            timed_out = True
            exit_code = TIMEOUT_EXIT_CODE
        except BaseException:
            terminate_process_group(process, kill_grace)
            raise
        else:
            # Background children still in the group would otherwise be orphaned.
            _signal_group(process.pid, signal.SIGKILL)

        out.seek(0)
        output = out.read().decode("utf-8", errors="backslashreplace")

    return ProcessOutcome(
        output=output,
        exit_code=exit_code,
        timed_out=timed_out,
    )


def _child_entry(conn, func: Callable[..., Any], args: tuple[Any, ...]) -> None:
    os.setsid()
    try:
        conn.send({"ok": True, "value": func(*args)})
    except BaseException as e:
        conn.send({"ok": False, "error_type": type(e).__name__, "error": str(e)})
    finally:
        conn.close()


def _reap_child(process: multiprocessing.Process, grace: float) -> None:
    """Stop ``process`` and anything it started, then collect it."""
    if process.is_alive():
        if not _signal_group(process.pid, signal.SIGTERM):
            process.terminate()
        process.join(grace)
    # Descendants left in the group go too, even if the worker already exited.
    if not _signal_group(process.pid, signal.SIGKILL) and process.is_alive():
        process.kill()
    process.join(5)
    if process.is_alive():
        logger.error(f"Worker {process.pid} did not exit after SIGKILL")


def run_in_child(
    func: Callable[..., Any],
    *args: Any,
    timeout: float,
    kill_grace: float = 0.2,
) -> Any:
    """
    Call ``func(*args)`` in a forked child and return its result.

    The result travels back over a pipe, so it must be picklable. Side
    effects on this process's memory are not visible to the caller; side
    effects on disk are, unless the call times out, in which case the child
    is killed before it can finish.

    Raises:
        TimeoutError: If no result arrives within ``timeout`` seconds
        ChildError: If ``func`` raised, or the child died without a result
    """
    ctx = multiprocessing.get_context("fork")
    recv_conn, send_conn = ctx.Pipe(duplex=False)
    process = ctx.Process(target=_child_entry, args=(send_conn, func, args), daemon=True)
    process.start()
    send_conn.close()

    try:
        if not recv_conn.poll(timeout):
            logger.warning(f"Worker timed out after {timeout} seconds, terminating...")
            raise TimeoutError(f"timed out after {timeout} seconds")
        try:
            message = recv_conn.recv()
        except EOFError as e:
            process.join(1)
            raise ChildError(
                "ChildProcessError",
                f"worker exited with code {process.exitcode} before returning a result",
            ) from e
        process.join(kill_grace)
    finally:
        recv_conn.close()
        _reap_child(process, kill_grace)

    if not message["ok"]:
        raise ChildError(message["error_type"], message["error"])
    return message["value"]
