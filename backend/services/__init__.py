"""
Services module for external collaborators and shared data primitives
"""

from .credit_ledger import CreditLedger
from .replicate_client import ReplicateClient, get_replicate_client

__all__ = ["CreditLedger", "ReplicateClient", "get_replicate_client"]
