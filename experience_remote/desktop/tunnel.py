"""Public tunnel supervision for the embedded relay server.

The tunnel is an external command (localtunnel's ``lt`` by default) run in
its own process group. Its public URL is scraped from its output.
"""

import asyncio
import logging
import os
import re
import shlex
import signal
from dataclasses import dataclass
from typing import Optional

from .. import config
from ..errors import TunnelError

logger = logging.getLogger("desktop.tunnel")


@dataclass(frozen=True)
class TunnelBinding:
    local_port: int
    public_url: str
    attempt_count: int = 0


async def _terminate(process: asyncio.subprocess.Process, timeout: float):
    if process.returncode is not None:
        return
    try:
        # Kill the whole group so helpers spawned by the tunnel command go too
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            os.killpg(pgid, signal.SIGKILL)
            await process.wait()
    except (ProcessLookupError, OSError):
        # Process or group already gone
        pass


class Tunnel:
    """A running tunnel process and the public URL it reported."""

    def __init__(self, process: asyncio.subprocess.Process, url: str):
        self.process = process
        self.url = url
        self._drain_task = asyncio.create_task(self._drain())

    @property
    def closed(self) -> bool:
        return self.process.returncode is not None

    async def _drain(self):
        # Keep reading so a chatty tunnel never blocks on a full pipe
        try:
            while await self.process.stdout.readline():
                pass
        except Exception as e:
            logger.debug(f"Tunnel output reader stopped: {e}")

    async def wait_closed(self) -> Optional[int]:
        """Wait until the tunnel process exits. Returns its exit code."""
        return await self.process.wait()

    async def close(self, timeout: float = 5.0):
        await _terminate(self.process, timeout)
        self._drain_task.cancel()
        logger.info(f"Tunnel closed: {self.url}")


class SubprocessTunnelProvider:
    """Opens tunnels by launching cmd_template with the local port filled in."""

    def __init__(
        self,
        cmd_template: str = config.TUNNEL_CMD,
        startup_timeout_s: float = config.TUNNEL_STARTUP_TIMEOUT_S,
        url_pattern: str = config.TUNNEL_URL_PATTERN,
    ):
        self.cmd_template = cmd_template
        self.startup_timeout_s = startup_timeout_s
        self.url_pattern = re.compile(url_pattern)

    async def open(self, port: int) -> Tunnel:
        cmd = shlex.split(self.cmd_template.format(port=port))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,  # new process group so we can kill children
            )
        except OSError as e:
            raise TunnelError(f"Cannot launch tunnel command {cmd[0]!r}: {e}") from e

        logger.info(f"Tunnel command started (pid={process.pid}): {' '.join(cmd)}")
        try:
            url = await asyncio.wait_for(self._read_url(process), timeout=self.startup_timeout_s)
        except asyncio.TimeoutError:
            await _terminate(process, timeout=2.0)
            raise TunnelError(f"Tunnel reported no public URL within {self.startup_timeout_s}s")

        if url is None:
            code = await process.wait()
            raise TunnelError(f"Tunnel exited (code={code}) before reporting a URL")

        logger.info(f"Tunnel established: {url}")
        return Tunnel(process, url)

    async def _read_url(self, process: asyncio.subprocess.Process) -> Optional[str]:
        while True:
            line = await process.stdout.readline()
            if not line:
                return None
            match = self.url_pattern.search(line.decode(errors="replace"))
            if match:
                return match.group(0)
