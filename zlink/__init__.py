"""Zlink Bridge - deposit-to-claim reconciliation engine"""

__version__ = "1.0.0"
