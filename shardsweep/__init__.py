"""
shardsweep: consistency stress harness for replicated, sharded vector stores.

Drives a mutation workload against every node of a cluster while shard
transfers run in the background, and verifies after each round that all
replicas converge to the expected state.
"""

__version__ = "0.1.0"
