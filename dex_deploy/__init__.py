"""dex_deploy package root.

Deployment orchestration for the upgradeable MoC decentralized exchange:
libraries, tokens, governance, proxies, price providers and token pairs.

See :py:mod:`dex_deploy.sequencer` for the entry point.
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"dex-deploy needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
