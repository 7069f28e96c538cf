"""
Tests for the local node subprocess manager.
"""

import sys

import pytest

from essayeur.config.settings import NodeConfig
from essayeur.domain.exceptions import NetworkStartupError
from essayeur.infrastructure.network.local_node import LocalNodeProvider

# Nothing listens here, so readiness checks always fail
UNUSED_PORT = 1


def provider_for(command, reporter, timeout=1.0) -> LocalNodeProvider:
    return LocalNodeProvider(
        NodeConfig(command=command, startup_timeout=timeout), reporter=reporter
    )


def test_port_is_substituted(reporter):
    provider = provider_for(["ganache", "--port", "{port}", "-h", "0.0.0.0"], reporter)

    assert provider.command_for(9545) == ["ganache", "--port", "9545", "-h", "0.0.0.0"]
    assert not provider.attach_only
    assert provider_for([], reporter).attach_only


async def test_missing_binary_is_a_startup_error(reporter):
    provider = provider_for(["definitely-not-a-chain-node-binary"], reporter)

    with pytest.raises(NetworkStartupError, match="Failed to launch node"):
        await provider.listen(UNUSED_PORT)

    assert not provider.is_running()


async def test_node_exiting_early_is_a_startup_error(reporter):
    provider = provider_for(
        [sys.executable, "-c", "import sys; sys.stderr.write('bad flag'); sys.exit(3)"],
        reporter,
        timeout=10.0,
    )

    with pytest.raises(NetworkStartupError, match="exited with code 3") as exc_info:
        await provider.listen(UNUSED_PORT)

    assert "bad flag" in exc_info.value.message
    assert not provider.is_running()


async def test_unresponsive_node_is_killed_after_timeout(reporter):
    provider = provider_for(
        [sys.executable, "-c", "import time; time.sleep(60)"], reporter, timeout=1.0
    )

    with pytest.raises(NetworkStartupError, match="not reachable"):
        await provider.listen(UNUSED_PORT)

    assert provider.process is None
    assert not provider.is_running()


async def test_attach_to_running_node(reporter, monkeypatch):
    provider = provider_for([], reporter)

    async def ready(client):
        return "Ganache/v7.9.0"

    monkeypatch.setattr(provider, "_is_ready", ready)
    handle = await provider.listen(8545)

    assert handle.client_version == "Ganache/v7.9.0"
    assert handle.pid is None
    assert handle.url == "http://127.0.0.1:8545"
    assert await provider.listen(8545) is handle


async def test_close_is_idempotent(reporter, monkeypatch):
    provider = provider_for([sys.executable, "-c", "import time; time.sleep(60)"], reporter)

    async def ready(client):
        return "stub"

    monkeypatch.setattr(provider, "_is_ready", ready)
    await provider.listen(UNUSED_PORT)
    assert provider.is_running()

    await provider.close()
    await provider.close()

    assert not provider.is_running()
    assert provider.handle is None
