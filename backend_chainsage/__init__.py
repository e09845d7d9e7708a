"""
Backend ChainSage — monitored-entity registry and activity-risk pipeline.

Tracks EVM wallets, tokens and contracts, pulls their activity from a chain
indexer, scores it for anomalies (AI first, deterministic rules as fallback)
and republishes findings to a durable event log and live subscribers.
"""

__version__ = "0.1.0"
