"""
Pocket Bank

Single-user banking demo service: registration, cookie sessions, deposits,
withdrawals, peer-to-peer transfers, transaction history and profile
management over a document store.
"""

__version__ = "1.0.0"
