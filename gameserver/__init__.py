"""
Game Server - Account Database

Account storage for the game server: schema detection and upgrade,
background credential migration, and a small REST API over the accounts.
"""

__version__ = "1.2.0"

__all__ = [
    "account",
    "config",
    "credentials",
    "errors",
    "server",
    "slots",
    "storage",
]
