"""
Local two-validator demo cluster bootstrap.

Drives the external key generator, cluster setup script, ledger tool and
faucet launcher in a fixed, fail-fast sequence.
"""

__version__ = "0.1.0"
