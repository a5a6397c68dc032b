"""Deploy the upgradeable MoC decentralized exchange.

- Deploys libraries, tokens (unless ``existingTokens``), governance, proxies and price providers

- Hands the proxy admin over to the upgrade delegator

- Prints the deployed addresses as JSON

To run against a node:

.. code-block:: shell

    export JSON_RPC_URL=https://public-node.testnet.rsk.co
    export PRIVATE_KEY=...
    export NETWORK=rskTestnet
    export ARTIFACTS_PATH=build/contracts
    python scripts/deploy-dex.py

To rehearse without a node, against the in-memory backend:

.. code-block:: shell

    DRY_RUN_BACKEND=true NETWORK=development python scripts/deploy-dex.py

Environment variables

- ``NETWORK``: configuration section to use, default ``development``
- ``CONFIG_FILE``: default ``config/deploy-config.json``
- ``ARTIFACTS_PATH``: compiled contracts, default ``build/contracts``
- ``SUMMARY_FILE``: also write the summary JSON here
- ``LOG_FILE``: also log here
- ``LOG_LEVEL``: default ``info``
"""

import logging
import os
import sys
from pathlib import Path

from eth_account import Account
from web3 import HTTPProvider, Web3

from dex_deploy.backend import Web3Backend
from dex_deploy.config import ConfigResolver
from dex_deploy.errors import DeploymentAborted, DeploymentError
from dex_deploy.sequencer import DeploymentSequencer
from dex_deploy.testing import InMemoryBackend
from dex_deploy.utils import setup_console_logging


logger = logging.getLogger(__name__)


def main() -> int:
    log_file = os.environ.get("LOG_FILE")
    setup_console_logging(log_file=Path(log_file) if log_file else None)

    network = os.environ.get("NETWORK", "development")
    config_file = Path(os.environ.get("CONFIG_FILE", "config/deploy-config.json"))
    summary_file = os.environ.get("SUMMARY_FILE")

    try:
        config = ConfigResolver.from_file(config_file).resolve(network)

        if os.environ.get("DRY_RUN_BACKEND", "false").lower() == "true":
            backend = InMemoryBackend()
            owner = backend.deployer
            logger.info("Rehearsing %s deployment with in-memory backend", network)
        else:
            web3 = Web3(HTTPProvider(os.environ["JSON_RPC_URL"]))
            private_key = os.environ.get("PRIVATE_KEY")
            if private_key:
                deployer = Account.from_key(private_key)
                owner = deployer.address
            else:
                # Unlocked node account, e.g. Anvil or Ganache
                deployer = owner = web3.eth.accounts[0]

            backend = Web3Backend(web3, deployer, Path(os.environ.get("ARTIFACTS_PATH", "build/contracts")))
            logger.info("Deploying %s on chain %d as %s", network, web3.eth.chain_id, owner)

        summary = DeploymentSequencer(backend, config, owner).run()
    except DeploymentAborted as e:
        logger.error("Deployment failed in phase %s, contract %s. Contracts deployed so far are in the log above.", e.phase, e.role or "-")
        return 1
    except DeploymentError as e:
        logger.error("Deployment failed: %s", e)
        return 1

    print(summary.to_json())

    if summary_file:
        summary.write(Path(summary_file))
        logger.info("Wrote summary to %s", summary_file)

    return 0


if __name__ == "__main__":
    sys.exit(main())
