"""
Chain Deployer
==============

Idempotent, resumable deployment of an upgradeable contract system.

Structure:
- registry: persisted name -> address bindings per network
- ledger: web3 client used for every read, deploy and transaction
- proxies: proxy administrator wrapper for the three proxy kinds
- verifier: postconditions checked after every mutation
- extensions: typed extension slots in factory registries
- reconciler: the phased deployment driver
"""

__version__ = "1.0.0"
__author__ = "Chain Deployer Team"
