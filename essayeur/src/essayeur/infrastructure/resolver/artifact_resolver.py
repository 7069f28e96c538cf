"""
Artifact resolver - contract name to deployed interface.

Artifacts are JSON files in the build directory, one per contract:

    {
        "contractName": "Token",
        "abi": [...],
        "bytecode": "0x...",
        "sourcePath": "/project/contracts/Token.sol",
        "updatedAt": 1700000000.0,
        "networks": {"1337": {"address": "0x...", "transactionHash": "0x..."}}
    }
"""

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import NETWORK_WILDCARD
from essayeur.domain.exceptions import ArtifactNotFoundError


@dataclass
class ContractInterface:
    """Compiled contract plus its address on the active network."""

    name: str
    abi: List[Dict[str, Any]]
    bytecode: str
    address: Optional[str] = None
    network_id: Optional[str] = None
    source_path: Optional[str] = None
    transaction_hash: Optional[str] = None

    @property
    def deployed(self) -> bool:
        return self.address is not None

    @property
    def deployable(self) -> bool:
        return self.bytecode not in ("", "0x")

    def function(self, name: str) -> Dict[str, Any]:
        """
        Find a function ABI entry by name.

        Raises:
            KeyError: If the contract has no such function
        """
        for entry in self.abi:
            if entry.get("type") == "function" and entry.get("name") == name:
                return entry
        raise KeyError(f"{self.name} has no function '{name}'")

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [entry for entry in self.abi if entry.get("type") == "event"]


class ArtifactResolver:
    """
    Reads and updates contract artifacts in the build directory.

    With cache_on=False every require() reads the artifact file again,
    so tests in a rerun see the addresses of that rerun's deployment.
    """

    def __init__(
        self,
        build_path: Path,
        network_id: str = NETWORK_WILDCARD,
        cache_on: bool = True,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize resolver.

        Args:
            build_path: Directory holding <ContractName>.json artifacts
            network_id: Network whose addresses require() returns
            cache_on: Keep parsed artifacts in memory
            reporter: Optional reporter for logging
        """
        self.build_path = Path(build_path)
        self.network_id = network_id
        self.cache_on = cache_on
        self.reporter = reporter or SystemReporter(
            name="artifact_resolver", level=20, verbose=1
        )
        self._cache: Dict[str, Dict[str, Any]] = {}

    def artifact_path(self, name: str) -> Path:
        return self.build_path / f"{name}.json"

    def clear_cache(self) -> None:
        self._cache.clear()

    # ================================================================
    # READ
    # ================================================================

    def load_artifact(self, name: str) -> Dict[str, Any]:
        """
        Read one artifact.

        Raises:
            ArtifactNotFoundError: No artifact file for name
        """
        if self.cache_on and name in self._cache:
            return self._cache[name]

        path = self.artifact_path(name)
        if not path.exists():
            raise ArtifactNotFoundError(
                f"Could not find artifacts for {name}",
                details={"name": name, "build_path": str(self.build_path)},
            )

        with open(path, "r") as f:
            data = json.load(f)

        if self.cache_on:
            self._cache[name] = data
        return data

    def artifacts(self) -> List[Dict[str, Any]]:
        """All artifacts in the build directory, sorted by contract name."""
        if not self.build_path.is_dir():
            return []

        result = []
        for path in sorted(self.build_path.glob("*.json")):
            with open(path, "r") as f:
                result.append(json.load(f))
        return result

    def require(self, name: str) -> ContractInterface:
        """
        Resolve a contract name to its deployed interface.

        Args:
            name: Contract name

        Returns:
            ContractInterface (address is None if not deployed on the
            active network)

        Raises:
            ArtifactNotFoundError: No artifact for name
        """
        data = self.load_artifact(name)
        deployment = self._deployment(data)

        return ContractInterface(
            name=data.get("contractName", name),
            abi=data.get("abi", []),
            bytecode=data.get("bytecode", "0x"),
            address=deployment.get("address"),
            network_id=self.network_id,
            source_path=data.get("sourcePath"),
            transaction_hash=deployment.get("transactionHash"),
        )

    def _deployment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        networks = data.get("networks") or {}
        if self.network_id != NETWORK_WILDCARD:
            return networks.get(str(self.network_id), {})
        # Wildcard: whatever network recorded an address
        for entry in networks.values():
            if entry.get("address"):
                return entry
        return {}

    # ================================================================
    # WRITE
    # ================================================================

    def write_artifact(self, data: Dict[str, Any]) -> Path:
        """
        Write an artifact atomically.

        Args:
            data: Artifact contents (contractName required)

        Returns:
            Path of the written file
        """
        name = data["contractName"]
        path = self.artifact_path(name)
        self.build_path.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.build_path), prefix=f".{name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            os.unlink(tmp_path)
            raise

        self._cache.pop(name, None)
        return path

    def record_address(
        self, name: str, address: str, transaction_hash: Optional[str] = None
    ) -> None:
        """Store the deployed address of name for the active network."""
        data = dict(self.load_artifact(name))
        networks = dict(data.get("networks") or {})
        networks[str(self.network_id)] = {
            "address": address,
            "transactionHash": transaction_hash,
        }
        data["networks"] = networks
        self.write_artifact(data)

    def reset_network(self, network_id: Optional[str] = None) -> int:
        """
        Forget every recorded address on a network.

        Args:
            network_id: Network to clear (default: the active one;
                        wildcard clears all networks)

        Returns:
            Number of artifacts modified
        """
        target = str(network_id if network_id is not None else self.network_id)
        cleared = 0

        for data in self.artifacts():
            networks = dict(data.get("networks") or {})
            if not networks:
                continue

            if target == NETWORK_WILDCARD:
                networks = {}
            elif target in networks:
                networks.pop(target)
            else:
                continue

            data["networks"] = networks
            self.write_artifact(data)
            cleared += 1

        self.clear_cache()
        self.reporter.debug(
            f"Cleared addresses of {cleared} artifact(s) on network {target}",
            context="ArtifactResolver",
        )
        return cleared
