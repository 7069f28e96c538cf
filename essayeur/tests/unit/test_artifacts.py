"""
Tests for artifact resolution and Solidity staleness detection.
"""

import json
import os
import sys

import pytest

from essayeur.domain.exceptions import ArtifactNotFoundError, CompileError
from essayeur.infrastructure.compiler import solc_compiler
from essayeur.infrastructure.compiler.solc_compiler import SolcCompiler, parse_imports
from essayeur.infrastructure.resolver.artifact_resolver import ArtifactResolver

SECOND = 1_000_000_000


def set_mtime(path, seconds: float) -> None:
    ns = int(seconds * SECOND)
    os.utime(path, ns=(ns, ns))


def artifact(name, source="", updated_at=0.0, bytecode="0x6080", networks=None):
    return {
        "contractName": name,
        "abi": [
            {"type": "function", "name": "transfer", "inputs": []},
            {"type": "event", "name": "Transfer", "inputs": []},
        ],
        "bytecode": bytecode,
        "sourcePath": str(source),
        "updatedAt": updated_at,
        "networks": networks or {},
    }


@pytest.fixture
def artifact_resolver(config, reporter):
    return ArtifactResolver(config.build_path, cache_on=False, reporter=reporter)


# ================================================================
# ARTIFACT RESOLVER
# ================================================================


def test_unknown_contract_raises(artifact_resolver):
    with pytest.raises(ArtifactNotFoundError, match="Could not find artifacts for Missing"):
        artifact_resolver.require("Missing")


def test_require_returns_interface_for_active_network(artifact_resolver):
    artifact_resolver.write_artifact(artifact("Token"))
    artifact_resolver.network_id = "1337"

    assert not artifact_resolver.require("Token").deployed

    artifact_resolver.record_address("Token", "0xt0", "0xtx")
    token = artifact_resolver.require("Token")

    assert token.address == "0xt0"
    assert token.transaction_hash == "0xtx"
    assert token.deployable
    assert token.function("transfer")["name"] == "transfer"
    assert [e["name"] for e in token.events] == ["Transfer"]
    with pytest.raises(KeyError):
        token.function("burn")


def test_wildcard_network_picks_any_recorded_address(artifact_resolver):
    artifact_resolver.write_artifact(
        artifact("Token", networks={"5777": {"address": "0xabc"}})
    )

    assert artifact_resolver.require("Token").address == "0xabc"


def test_reset_network_clears_addresses(artifact_resolver):
    artifact_resolver.write_artifact(
        artifact("Token", networks={"1337": {"address": "0x1"}, "1": {"address": "0x2"}})
    )
    artifact_resolver.write_artifact(artifact("Vault"))

    assert artifact_resolver.reset_network("1337") == 1
    assert artifact_resolver.load_artifact("Token")["networks"] == {"1": {"address": "0x2"}}

    assert artifact_resolver.reset_network("*") == 1
    assert artifact_resolver.load_artifact("Token")["networks"] == {}


def test_cached_resolver_serves_memory_copy(config, reporter):
    resolver = ArtifactResolver(config.build_path, cache_on=True, reporter=reporter)
    resolver.write_artifact(artifact("Token"))
    resolver.load_artifact("Token")

    path = resolver.artifact_path("Token")
    path.write_text(json.dumps(artifact("Token", bytecode="0xbeef")))
    assert resolver.load_artifact("Token")["bytecode"] == "0x6080"

    resolver.clear_cache()
    assert resolver.load_artifact("Token")["bytecode"] == "0xbeef"


def test_writes_leave_no_temporary_files(artifact_resolver, config):
    artifact_resolver.write_artifact(artifact("Token"))
    artifact_resolver.record_address("Token", "0x1")

    assert [p.name for p in config.build_path.iterdir()] == ["Token.json"]
    assert [a["contractName"] for a in artifact_resolver.artifacts()] == ["Token"]


# ================================================================
# STALENESS
# ================================================================


@pytest.fixture
def contracts(config):
    root = config.contracts_path
    root.mkdir()
    (root / "Math.sol").write_text("pragma solidity ^0.8.0;\nlibrary Math {}\n")
    (root / "Token.sol").write_text('import "./Math.sol";\ncontract Token {}\n')
    (root / "Vault.sol").write_text(
        'import {Token} from "./Token.sol";\n'
        'import "@openzeppelin/contracts/access/Ownable.sol";\n'
        "contract Vault {}\n"
    )
    for path in root.iterdir():
        set_mtime(path, 1000)
    return root


def test_parse_imports_keeps_relative_only(contracts):
    assert parse_imports(contracts / "Vault.sol") == {(contracts / "Token.sol").resolve()}
    assert parse_imports(contracts / "Math.sol") == set()


def build_all(resolver, contracts, updated_at=2000.0):
    for name in ("Math", "Token", "Vault"):
        resolver.write_artifact(
            artifact(name, source=(contracts / f"{name}.sol").resolve(), updated_at=updated_at)
        )


async def test_never_built_sources_are_stale(artifact_resolver, config, contracts, reporter):
    stale = await SolcCompiler(reporter=reporter).detect_stale(artifact_resolver, config)

    assert [p.name for p in stale] == ["Math.sol", "Token.sol", "Vault.sol"]


async def test_up_to_date_build_has_nothing_stale(artifact_resolver, config, contracts, reporter):
    build_all(artifact_resolver, contracts)

    assert await SolcCompiler(reporter=reporter).detect_stale(artifact_resolver, config) == []


async def test_touched_source_makes_dependents_stale(
    artifact_resolver, config, contracts, reporter
):
    build_all(artifact_resolver, contracts)
    set_mtime(contracts / "Math.sol", 3000)

    stale = await SolcCompiler(reporter=reporter).detect_stale(artifact_resolver, config)

    assert [p.name for p in stale] == ["Math.sol", "Token.sol", "Vault.sol"]


async def test_leaf_change_stays_local(artifact_resolver, config, contracts, reporter):
    build_all(artifact_resolver, contracts)
    set_mtime(contracts / "Vault.sol", 3000)

    stale = await SolcCompiler(reporter=reporter).detect_stale(artifact_resolver, config)

    assert [p.name for p in stale] == ["Vault.sol"]


async def test_candidate_sources_are_considered(
    artifact_resolver, config, contracts, reporter, tmp_path
):
    build_all(artifact_resolver, contracts)
    helper = tmp_path / "test" / "Helper.sol"
    helper.parent.mkdir()
    helper.write_text("contract Helper {}")

    stale = await SolcCompiler(reporter=reporter).detect_stale(
        artifact_resolver, config.with_overrides(files=[helper])
    )

    assert stale == [helper.resolve()]


async def test_deleted_candidate_is_skipped(
    artifact_resolver, config, contracts, reporter, tmp_path
):
    build_all(artifact_resolver, contracts)
    set_mtime(contracts / "Token.sol", 3000)
    deleted = tmp_path / "test" / "Removed.sol"

    stale = await SolcCompiler(reporter=reporter).detect_stale(
        artifact_resolver, config.with_overrides(files=[deleted])
    )

    assert [p.name for p in stale] == ["Token.sol", "Vault.sol"]


async def test_unreadable_source_is_a_compile_error(
    artifact_resolver, config, contracts, reporter, monkeypatch
):
    def denied(source):
        raise PermissionError(13, "Permission denied", str(source))

    monkeypatch.setattr(solc_compiler, "parse_imports", denied)

    with pytest.raises(CompileError, match="Cannot read") as exc_info:
        await SolcCompiler(reporter=reporter).detect_stale(artifact_resolver, config)

    assert exc_info.value.details["source"].endswith("Math.sol")
    assert isinstance(exc_info.value.__cause__, PermissionError)


# ================================================================
# COMPILE
# ================================================================


async def test_nothing_to_compile_returns_empty(config, reporter):
    assert await SolcCompiler(reporter=reporter).compile(config) == []


async def test_missing_compiler_is_a_compile_error(config, contracts, reporter):
    run_config = config.with_overrides(
        files=[contracts / "Math.sol"], solc_binary="no-such-solc-binary"
    )

    with pytest.raises(CompileError, match="Compiler not available"):
        await SolcCompiler(reporter=reporter).compile(run_config)


async def test_compiler_failure_carries_its_output(config, contracts, reporter):
    script = config.working_directory / "fake_solc.py"
    script.write_text(
        "import sys\nsys.stderr.write(\"ParserError: Expected ';'\")\nsys.exit(1)\n"
    )
    wrapper = config.working_directory / "fake-solc"
    wrapper.write_text(f"#!/bin/sh\nexec {sys.executable} {script} \"$@\"\n")
    wrapper.chmod(0o755)

    run_config = config.with_overrides(
        files=[contracts / "Math.sol"], solc_binary=str(wrapper)
    )

    with pytest.raises(CompileError, match="Expected ';'") as exc_info:
        await SolcCompiler(reporter=reporter).compile(run_config)

    assert exc_info.value.stage == "build"
    assert exc_info.value.details["returncode"] == 1


def test_write_artifacts_keeps_recorded_networks(artifact_resolver, config, contracts, reporter):
    artifact_resolver.write_artifact(
        artifact("Token", networks={"1337": {"address": "0xold"}})
    )
    output = {
        "contracts": {
            f"{contracts / 'Token.sol'}:Token": {"abi": "[]", "bin": "6080"},
            f"{contracts / 'Math.sol'}:Math": {"abi": [], "bin": ""},
        }
    }

    paths = SolcCompiler(reporter=reporter).write_artifacts(output, config)

    assert sorted(p.name for p in paths) == ["Math.json", "Token.json"]
    token = artifact_resolver.load_artifact("Token")
    assert token["networks"] == {"1337": {"address": "0xold"}}
    assert token["bytecode"] == "0x6080"
    assert token["abi"] == []
    assert token["sourcePath"] == str((contracts / "Token.sol").resolve())
    assert artifact_resolver.load_artifact("Math")["bytecode"] == "0x"
