"""Compiled contract artifacts and Solidity library linking.

Artifacts are the JSON files produced by Truffle, Hardhat or Forge. We need
the keys ``abi``, ``bytecode`` and, for contracts using libraries,
``linkReferences``.
"""

import json
import logging
import re
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress

logger = logging.getLogger(__name__)

# How big are our artifact caches
_CACHE_SIZE = 512

#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS_STR = "0x0000000000000000000000000000000000000000"

# solc >= 0.5 placeholders ``__$<34 hex chars>$__`` and legacy Truffle ``__LibName______`` placeholders
_PLACEHOLDER_RE = re.compile(r"__\$[0-9a-fA-F]{34}\$__|__[A-Za-z0-9_$]{36}__")


class ArtifactNotFound(Exception):
    """No compiled artifact for a contract name."""


class UnlinkedBytecode(Exception):
    """Bytecode still contains library placeholders."""


def find_artifact_path(artifacts_path: Path, name: str) -> Path:
    """Locate ``<name>.json`` in an artifacts tree.

    Supports a flat Truffle ``build/contracts`` folder and nested Hardhat
    ``artifacts/contracts/Foo.sol/Foo.json`` or Forge ``out/Foo.sol/Foo.json`` layouts.
    """
    flat = artifacts_path / f"{name}.json"
    if flat.exists():
        return flat

    candidates = sorted(p for p in artifacts_path.rglob(f"{name}.json") if not p.name.endswith(".dbg.json"))
    if not candidates:
        raise ArtifactNotFound(f"No artifact {name}.json under {artifacts_path}")
    if len(candidates) > 1:
        logger.warning("Multiple artifacts for %s, using %s", name, candidates[0])
    return candidates[0]


@lru_cache(maxsize=_CACHE_SIZE)
def get_artifact(artifacts_path: Path, name: str) -> dict:
    """Reads a compiled contract artifact.

    Loaded files are cached in in-process memory.

    :param artifacts_path:
        Root folder of the compiler output

    :param name:
        Contract name, e.g. ``MoCDecentralizedExchange``

    :return:
        Full contract interface, including ``abi`` and ``bytecode``.
    """
    path = find_artifact_path(artifacts_path, name)
    with open(path, "rt", encoding="utf-8") as f:
        return json.load(f)


def get_bytecode(artifact: dict) -> str:
    """Get creation bytecode hex from any supported artifact format."""
    bytecode = artifact.get("bytecode")
    if type(bytecode) == dict:
        # Forge, contains keys object, sourceMap, linkReferences
        bytecode = bytecode["object"]
    assert bytecode, "Artifact has no bytecode, is it an interface?"
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return bytecode


def get_link_references(artifact: dict) -> dict:
    """Get ``{source file: {library name: [{start, length}]}}`` link references."""
    bytecode = artifact.get("bytecode")
    if type(bytecode) == dict:
        return bytecode.get("linkReferences") or {}
    return artifact.get("linkReferences") or {}


def get_function_inputs(artifact: dict, method: str) -> list[str] | None:
    """Input types of a function in the artifact ABI.

    :return:
        List of Solidity types, or ``None`` if the function is not in the ABI or is overloaded
    """
    matches = [entry for entry in artifact["abi"] if entry.get("type") == "function" and entry.get("name") == method]
    if len(matches) != 1:
        return None
    return [i["type"] for i in matches[0]["inputs"]]


def has_placeholders(bytecode: str) -> bool:
    return _PLACEHOLDER_RE.search(bytecode) is not None


def link_libraries(bytecode: str, link_references: dict, libraries: dict[str, HexAddress]) -> str:
    """Link Solidity libraries into bytecode.

    Replace library placeholders by the on-chain addresses of the deployed library contracts.

    - With ``linkReferences`` (Hardhat, Forge) patch the exact byte offsets

    - Without (legacy Truffle) replace ``__LibName___`` placeholders by name

    :param bytecode:
        Raw bytecode of a Solidity contract.

        Bytecode must be a in string format, because placeholders are not parseable hex.

    :param link_references:
        List of binary sequences we need to replaced by a library address.

        Get from the artifact with :py:func:`get_link_references`.

    :param libraries:
        Library name -> deployed address

    :raise UnlinkedBytecode:
        If a referenced library is not given or placeholders remain after linking

    :return:
        Linked bytecode
    """

    assert type(bytecode) == str, f"Got {type(bytecode)}"
    assert bytecode.startswith("0x")

    hex_blob = bytecode[2:]

    if link_references:
        # Remove placeholders and replace them with zeroes,
        # so that we can convert the bytecode to binary
        zeroes = ZERO_ADDRESS_STR[2:]
        fixed_hex_blob = _PLACEHOLDER_RE.sub(zeroes, hex_blob)
        data = bytearray.fromhex(fixed_hex_blob)

        for ref_file, ref_data in link_references.items():
            for library_name, ref_array in ref_data.items():
                address = libraries.get(library_name)
                if not address:
                    raise UnlinkedBytecode(f"Library {library_name} from {ref_file} was not given, have {', '.join(libraries)}")
                byte_address = bytes.fromhex(address[2:])
                for ref in ref_array:
                    start = ref["start"]
                    length = ref["length"]
                    data[start : start + length] = byte_address

        return "0x" + data.hex()

    for library_name, address in libraries.items():
        # Truffle pads the library name with underscores to 40 chars
        placeholder = f"__{library_name}".ljust(40, "_")[:40]
        hex_blob = hex_blob.replace(placeholder, address[2:].lower())

    if has_placeholders(hex_blob):
        raise UnlinkedBytecode(f"Bytecode still has library placeholders after linking {', '.join(libraries)}")

    return "0x" + hex_blob
