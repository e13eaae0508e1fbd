"""Log streaming via `kubectl logs`.

Both pipes of the subprocess are drained by their own reader task and
joined before the exit status is read; leaving either undrained can
fill the pipe buffer and deadlock the child.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Callable

from aictl.types import LABEL_NAME, AgentName

LineHandler = Callable[[str], None]


def _write_stdout(line: str) -> None:
    sys.stdout.write(line)
    sys.stdout.flush()


def _write_stderr(line: str) -> None:
    sys.stderr.write(line)


class LogStreamer:
    def __init__(self, kubectl: str = "kubectl", namespace: str = "default") -> None:
        self._kubectl = kubectl
        self._namespace = namespace

    def command(self, agent: AgentName, tail: int = 100, follow: bool = False) -> list[str]:
        cmd = [
            self._kubectl, "logs",
            "-n", self._namespace,
            "-l", f"{LABEL_NAME}={agent}",
            f"--tail={tail}",
            "--all-containers",
        ]
        if follow:
            cmd.append("-f")
        return cmd

    async def stream(
        self,
        cmd: list[str],
        on_stdout: LineHandler = _write_stdout,
        on_stderr: LineHandler = _write_stderr,
    ) -> int:
        """Run `cmd`, forwarding each output line. Returns the exit code."""
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        async def _pump(pipe: asyncio.StreamReader, handler: LineHandler) -> None:
            while True:
                line = await pipe.readline()
                if not line:
                    break
                handler(line.decode(errors="replace"))

        readers = [
            asyncio.ensure_future(_pump(proc.stdout, on_stdout)),
            asyncio.ensure_future(_pump(proc.stderr, on_stderr)),
        ]
        try:
            await asyncio.gather(*readers)
        except BaseException:
            # a failing handler must not leave the other reader or kubectl behind
            for reader in readers:
                reader.cancel()
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            await proc.wait()
            raise
        return await proc.wait()
