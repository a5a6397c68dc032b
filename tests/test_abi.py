"""Artifact reading and library linking."""

import json

import pytest

from dex_deploy.abi import ArtifactNotFound, UnlinkedBytecode, find_artifact_path, get_bytecode, get_function_inputs, get_link_references, has_placeholders, link_libraries


TICK_STATE = "0x1111111111111111111111111111111111111111"

EXCHANGE_LIB = "0x2222222222222222222222222222222222222222"

#: solc placeholder of a library
PLACEHOLDER = "__$" + "ab" * 17 + "$__"


def test_link_by_offset():
    bytecode = "0x6000" + PLACEHOLDER + "f3"
    link_references = {"contracts/libs/TickState.sol": {"TickState": [{"start": 2, "length": 20}]}}

    linked = link_libraries(bytecode, link_references, {"TickState": TICK_STATE})

    assert linked == "0x6000" + TICK_STATE[2:] + "f3"
    assert not has_placeholders(linked)


def test_link_multiple_references():
    bytecode = "0x" + PLACEHOLDER + "00" + PLACEHOLDER
    link_references = {
        "contracts/libs/TickState.sol": {"TickState": [{"start": 0, "length": 20}]},
        "contracts/libs/MoCExchangeLib.sol": {"MoCExchangeLib": [{"start": 21, "length": 20}]},
    }

    linked = link_libraries(bytecode, link_references, {"TickState": TICK_STATE, "MoCExchangeLib": EXCHANGE_LIB})

    assert linked == "0x" + TICK_STATE[2:] + "00" + EXCHANGE_LIB[2:]


def test_link_missing_library():
    link_references = {"contracts/libs/TickState.sol": {"TickState": [{"start": 0, "length": 20}]}}
    with pytest.raises(UnlinkedBytecode, match="TickState"):
        link_libraries("0x" + PLACEHOLDER, link_references, {"MoCExchangeLib": EXCHANGE_LIB})


def test_link_truffle_placeholders():
    placeholder = "__TickState" + "_" * 29
    assert len(placeholder) == 40

    linked = link_libraries("0x60" + placeholder + "f3", {}, {"TickState": TICK_STATE})

    assert linked == "0x60" + TICK_STATE[2:] + "f3"


def test_truffle_placeholder_left():
    placeholder = "__SafeTransfer" + "_" * 26
    with pytest.raises(UnlinkedBytecode):
        link_libraries("0x60" + placeholder, {}, {"TickState": TICK_STATE})


def test_artifact_formats():
    forge = {"abi": [], "bytecode": {"object": "6000", "linkReferences": {"a.sol": {"A": []}}}}
    assert get_bytecode(forge) == "0x6000"
    assert get_link_references(forge) == {"a.sol": {"A": []}}

    hardhat = {"abi": [], "bytecode": "0x6000", "linkReferences": {}}
    assert get_bytecode(hardhat) == "0x6000"
    assert get_link_references(hardhat) == {}


def test_function_inputs():
    artifact = {
        "abi": [
            {"type": "function", "name": "initialize", "inputs": [{"name": "governor", "type": "address"}, {"name": "admin", "type": "address"}]},
            {"type": "function", "name": "mint", "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}]},
            {"type": "function", "name": "mint", "inputs": [{"name": "amount", "type": "uint256"}]},
        ]
    }
    assert get_function_inputs(artifact, "initialize") == ["address", "address"]
    assert get_function_inputs(artifact, "mint") is None
    assert get_function_inputs(artifact, "transferOwnership") is None


def test_find_artifact_nested(tmp_path):
    nested = tmp_path / "contracts" / "Governor.sol"
    nested.mkdir(parents=True)
    (nested / "Governor.json").write_text(json.dumps({"abi": []}))
    (nested / "Governor.dbg.json").write_text("{}")

    assert find_artifact_path(tmp_path, "Governor") == nested / "Governor.json"

    with pytest.raises(ArtifactNotFound):
        find_artifact_path(tmp_path, "Stopper")
