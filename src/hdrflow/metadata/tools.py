"""Async runner for external single-purpose command line tools."""

import asyncio
import errno
import shutil
from dataclasses import dataclass
from typing import List, Optional, Sequence, Type

from ..config import default_config as defaults
from ..core.errors import ToolError, ToolTimeout, ToolUnavailable
from ..utils.logging import get_logger

# Spawn errors worth a single retry
TRANSIENT_ERRNOS = {errno.EAGAIN, errno.EINTR, errno.ETXTBSY, errno.EMFILE, errno.ENFILE}
RETRY_DELAY = 0.5


@dataclass
class ToolResult:
    """Completed tool invocation.

    Attributes:
        returncode: Process exit code
        stdout: Decoded standard output
        stderr: Decoded standard error
    """
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined output, which some tools split unpredictably."""
        return f"{self.stdout}\n{self.stderr}".strip()


class ToolRunner:
    """Runs external tools with a timeout and a single transient retry."""

    def __init__(self, timeout: float = defaults.TOOL_TIMEOUT, retries: int = 1):
        """Initialize runner.

        Args:
            timeout: Default timeout in seconds for each invocation
            retries: Number of retries after a transient spawn failure
        """
        self.timeout = timeout
        self.retries = retries
        self._logger = get_logger(__name__)

    async def run(
        self,
        cmd: Sequence[str],
        timeout: Optional[float] = None,
        check: bool = True,
        error_cls: Type[ToolError] = ToolError
    ) -> ToolResult:
        """Run a command to completion.

        Args:
            cmd: Command and arguments
            timeout: Timeout override in seconds
            check: Raise ``error_cls`` on a non-zero exit
            error_cls: Error type raised for a failed exit

        Returns:
            Completed tool result

        Raises:
            ToolUnavailable: If the executable does not exist
            ToolTimeout: If the tool does not finish in time
            ToolError: If ``check`` is set and the tool exits non-zero
        """
        cmd = [str(part) for part in cmd]
        limit = self.timeout if timeout is None else timeout
        self._logger.debug("Running command: %s", " ".join(cmd))

        proc = await self._spawn(cmd)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            await _reap(proc)
            raise ToolTimeout(
                f"{cmd[0]} timed out after {limit:.0f}s",
                timeout=limit,
                cmd=cmd
            )
        except BaseException:
            # Cancelled while waiting, the tool must not outlive the caller
            await _reap(proc)
            raise

        result = ToolResult(
            returncode=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else ""
        )

        if check and result.returncode != 0:
            raise error_cls(
                f"{cmd[0]} exited with status {result.returncode}",
                cmd=cmd,
                stderr=result.stderr or result.stdout,
                returncode=result.returncode
            )
        return result

    async def _spawn(self, cmd: List[str]) -> asyncio.subprocess.Process:
        attempt = 0
        while True:
            try:
                return await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE
                )
            except FileNotFoundError as e:
                raise ToolUnavailable(cmd[0], str(e)) from e
            except OSError as e:
                if e.errno not in TRANSIENT_ERRNOS or attempt >= self.retries:
                    raise ToolError(
                        f"Failed to start {cmd[0]}: {e}",
                        cmd=cmd,
                        stderr=str(e)
                    ) from e
                attempt += 1
                self._logger.warning(
                    "Transient failure starting %s (%s), retrying", cmd[0], e
                )
                await asyncio.sleep(RETRY_DELAY)


async def _reap(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


async def check_available(runner: ToolRunner, tool: str, marker: str,
                          timeout: float = 10.0) -> bool:
    """Check whether a tool exists and responds to ``--help``.

    Args:
        runner: Tool runner
        tool: Executable name or path
        marker: Text expected in the help output
        timeout: Timeout in seconds

    Returns:
        True if the tool is usable
    """
    if not shutil.which(tool):
        return False
    try:
        result = await runner.run([tool, "--help"], timeout=timeout, check=False)
    except (ToolUnavailable, ToolError) as e:
        get_logger(__name__).debug("Availability check for %s failed: %s", tool, e)
        return False
    return marker in result.output
