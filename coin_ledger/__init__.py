"""
Coin Ledger

A chat-driven virtual currency ledger: balances, peer-to-peer payments and
administrative mint/burn, kept consistent with compare-and-set updates.
"""

__version__ = "1.0.0"
