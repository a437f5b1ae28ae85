"""Handlers for the Zlink bot"""

from . import (
    start,
    help_cmd,
    wallets,
    stats,
    claim,
    admin,
    errors,
)

__all__ = [
    "start",
    "help_cmd",
    "wallets",
    "stats",
    "claim",
    "admin",
    "errors",
]
