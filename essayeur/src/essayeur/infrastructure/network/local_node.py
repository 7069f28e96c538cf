"""
Local chain node manager.

Manages starting/stopping the development chain (ganache by default)
as a subprocess for the lifetime of an Essayeur process.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from shared.reporter.emojis import SystemEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import NodeConfig
from essayeur.domain.exceptions import NetworkStartupError, RpcError
from essayeur.infrastructure.network.rpc_client import ChainClient

STOP_TIMEOUT = 5.0


@dataclass
class NodeHandle:
    """A reachable node."""

    url: str
    port: int
    client_version: str
    pid: Optional[int] = None


class LocalNodeProvider:
    """
    Manages the local node lifecycle.

    Starts the node as a subprocess, waits until it answers JSON-RPC,
    and guarantees the process is terminated on close(). With an empty
    command it attaches to a node that is already running.
    """

    def __init__(
        self,
        node_config: NodeConfig,
        host: str = "127.0.0.1",
        cwd: Optional[Path] = None,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize node provider.

        Args:
            node_config: Launch command and startup timeout
            host: Host the node listens on
            cwd: Working directory for the node process
            reporter: Optional reporter for logging
        """
        self.node_config = node_config
        self.host = host
        self.cwd = cwd
        self.reporter = reporter or SystemReporter(
            name="local_node", level=20, verbose=1
        )
        self.process: Optional[asyncio.subprocess.Process] = None
        self.handle: Optional[NodeHandle] = None

    @property
    def attach_only(self) -> bool:
        return not self.node_config.command

    def command_for(self, port: int) -> List[str]:
        """Launch command with {port} substituted."""
        return [part.replace("{port}", str(port)) for part in self.node_config.command]

    async def listen(self, port: int) -> NodeHandle:
        """
        Start the node and wait for it to answer.

        Args:
            port: JSON-RPC port

        Returns:
            Handle of the reachable node

        Raises:
            NetworkStartupError: Node exited early, could not be launched,
                                 or did not answer within startup_timeout
        """
        if self.handle is not None:
            self.reporter.warning("Node already running", context="LocalNode")
            return self.handle

        url = f"http://{self.host}:{port}"

        if not self.attach_only:
            command = self.command_for(port)
            self.reporter.info(
                f"{SystemEmoji.STARTUP} Starting node: {' '.join(command)}",
                context="LocalNode",
            )
            try:
                self.process = await asyncio.create_subprocess_exec(
                    *command,
                    cwd=str(self.cwd) if self.cwd else None,
                    env=os.environ.copy(),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise NetworkStartupError(
                    f"Failed to launch node: {e}", details={"command": command}
                ) from e

        version = await self._wait_ready(url)
        self.handle = NodeHandle(
            url=url,
            port=port,
            client_version=version,
            pid=self.process.pid if self.process else None,
        )

        self.reporter.info(
            f"{SystemEmoji.CONNECTED} Node ready: {version} at {url}",
            context="LocalNode",
        )
        return self.handle

    async def _wait_ready(self, url: str) -> str:
        timeout = self.node_config.startup_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempt = 0

        async with ChainClient(url, timeout=2.0, reporter=self.reporter) as client:
            while True:
                attempt += 1
                version = await self._is_ready(client)
                if version is not None:
                    return version

                if self.process is not None and self.process.returncode is not None:
                    code = self.process.returncode
                    stderr = b""
                    if self.process.stderr is not None:
                        stderr = await self.process.stderr.read()
                    self.process = None
                    raise NetworkStartupError(
                        f"Node exited with code {code} before becoming ready: "
                        f"{stderr.decode(errors='replace').strip()}",
                        details={"url": url},
                    )

                if loop.time() >= deadline:
                    await self.close()
                    raise NetworkStartupError(
                        f"Node not reachable after {timeout}s ({attempt} attempts)",
                        details={"url": url, "attempts": attempt},
                    )

                await asyncio.sleep(0.25)

    async def _is_ready(self, client: ChainClient) -> Optional[str]:
        """
        Check if the node answers JSON-RPC.

        Returns:
            Client version if ready, None otherwise
        """
        try:
            return await client.client_version()
        except RpcError:
            return None

    async def close(self) -> None:
        """Stop the node. Safe to call more than once."""
        self.handle = None
        process, self.process = self.process, None

        if process is None or process.returncode is not None:
            return

        self.reporter.info(f"{SystemEmoji.SHUTDOWN} Stopping node", context="LocalNode")
        process.terminate()

        try:
            await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT)
        except asyncio.TimeoutError:
            self.reporter.warning(
                "Node didn't stop gracefully, forcing kill", context="LocalNode"
            )
            process.kill()
            await process.wait()

    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def __aenter__(self) -> "LocalNodeProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
