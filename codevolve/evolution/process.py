"""Bounded-timeout subprocess execution for validation and git.

Commands run without a shell, from an argument list. A command that
outlives its timeout is killed and reported as CommandTimeoutError.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from pydantic import BaseModel

from codevolve.exceptions import CommandTimeoutError

MAX_OUTPUT_SIZE = 50_000  # chars


class CommandResult(BaseModel):
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stderr when present, else stdout; for error details."""
        return (self.stderr or self.stdout).strip()


async def run_command(
    args: list[str],
    cwd: Path | str,
    timeout: float,
    input_text: str | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run ``args`` in ``cwd`` and wait at most ``timeout`` seconds."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd),
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(input=input_text.encode() if input_text is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandTimeoutError(
            f"Timeout: '{' '.join(args[:3])}' exceeded {timeout:g}s limit"
        )

    return CommandResult(
        args=list(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT_SIZE],
        stderr=stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT_SIZE],
    )
