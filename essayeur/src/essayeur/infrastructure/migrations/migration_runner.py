"""
Migration runner - deploys contracts to the test chain.

Migration scripts live in the migrations directory and are named
<number>_<description>.py. They run in numeric order; each exposes

    async def migrate(deployer, network, accounts): ...

(a plain def works too). Without a migrations directory every compiled
artifact that has bytecode is deployed with no constructor arguments.
"""

import re
import runpy
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig
from essayeur.domain.exceptions import DeployError
from essayeur.infrastructure.network.rpc_client import ChainClient
from essayeur.infrastructure.resolver.artifact_resolver import (
    ArtifactResolver,
    ContractInterface,
)
from essayeur.testing.contract_test import call_maybe_async

MIGRATION_PATTERN = re.compile(r"^(\d+)_.*\.py$")


class Deployer:
    """Sends creation transactions and records the resulting addresses."""

    def __init__(
        self,
        chain: ChainClient,
        resolver: ArtifactResolver,
        from_address: str,
        gas: int,
        gas_price: int,
        reporter: Optional[SystemReporter] = None,
    ):
        self.chain = chain
        self.resolver = resolver
        self.from_address = from_address
        self.gas = gas
        self.gas_price = gas_price
        self.reporter = reporter or SystemReporter(
            name="deployer", level=20, verbose=1
        )
        self.deployed: Dict[str, str] = {}

    async def deploy(self, name: str, args_data: str = "") -> ContractInterface:
        """
        Deploy a compiled contract.

        Args:
            name: Contract name
            args_data: ABI-encoded constructor arguments (hex)

        Returns:
            The contract's interface with its new address

        Raises:
            DeployError: No bytecode, or the creation transaction failed
        """
        contract = self.resolver.require(name)
        if not contract.deployable:
            raise DeployError(
                f"{name} has no bytecode (abstract contract or interface)",
                details={"contract": name},
            )

        data = contract.bytecode + args_data.removeprefix("0x")
        tx_hash = await self.chain.send_transaction(
            {
                "from": self.from_address,
                "data": data,
                "gas": self.gas,
                "gasPrice": self.gas_price,
            }
        )
        receipt = await self.chain.wait_for_receipt(tx_hash)

        address = receipt.get("contractAddress")
        if not address or receipt.get("status") == "0x0":
            raise DeployError(
                f"Deployment of {name} failed",
                details={"contract": name, "tx_hash": tx_hash},
            )

        self.resolver.record_address(name, address, tx_hash)
        self.deployed[name] = address
        self.reporter.info(
            f"{EssayeurEmoji.CONTRACT} {name}: {address}", context="Deployer"
        )
        return self.resolver.require(name)


class ScriptMigrationRunner:
    """Runs migration scripts against the chain with reset semantics."""

    def __init__(
        self,
        chain: ChainClient,
        resolver: ArtifactResolver,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize migration runner.

        Args:
            chain: Shared chain client
            resolver: Resolver whose addresses migrations update
            reporter: Optional reporter for logging
        """
        self.chain = chain
        self.resolver = resolver
        self.reporter = reporter or SystemReporter(
            name="migrations", level=20, verbose=1
        )

    @staticmethod
    def discover(migrations_path: Path) -> List[Tuple[int, Path]]:
        """Migration scripts sorted by their numeric prefix."""
        if not migrations_path.is_dir():
            return []

        scripts = []
        for path in migrations_path.iterdir():
            match = MIGRATION_PATTERN.match(path.name)
            if match and path.is_file():
                scripts.append((int(match.group(1)), path))
        return sorted(scripts)

    async def run(self, config: EssayeurConfig) -> None:
        """
        Run migrations.

        Args:
            config: Run config (reset=True discards recorded addresses)

        Raises:
            DeployError: Network id mismatch, missing migrate(), or a
                         failed deployment
        """
        network = config.network_config
        network_id = await self.chain.net_version()

        if not network.matches(network_id):
            raise DeployError(
                f"Network id {network_id} does not match configured "
                f"id {network.network_id} for network '{config.network}'",
                details={"network": config.network, "network_id": network_id},
            )

        self.resolver.network_id = network_id
        if config.reset:
            self.resolver.reset_network(network_id)
        self.resolver.clear_cache()

        accounts = await self.chain.get_accounts()
        from_address = config.from_address or (accounts[0] if accounts else None)
        if from_address is None:
            raise DeployError("No sender account available for migrations")

        deployer = Deployer(
            self.chain,
            self.resolver,
            from_address=from_address,
            gas=network.gas,
            gas_price=network.gas_price,
            reporter=self.reporter,
        )

        scripts = self.discover(config.migrations_path)
        if not scripts:
            await self._deploy_all(deployer)
            return

        for number, path in scripts:
            if not config.quiet:
                self.reporter.info(
                    f"{EssayeurEmoji.DEPLOY} Running migration {path.name}",
                    context="Migrations",
                )
            namespace = runpy.run_path(str(path))
            migrate = namespace.get("migrate")
            if migrate is None:
                raise DeployError(
                    f"Migration {path.name} does not define migrate()",
                    details={"migration": number},
                )
            await call_maybe_async(lambda: migrate(deployer, config.network, accounts))

    async def _deploy_all(self, deployer: Deployer) -> None:
        for artifact in self.resolver.artifacts():
            bytecode = artifact.get("bytecode", "0x")
            if bytecode in ("", "0x"):
                continue
            await deployer.deploy(artifact["contractName"])
