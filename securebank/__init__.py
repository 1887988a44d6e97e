"""
SecureBank Core

Account ledger and transaction-processing engine with a session-based
authentication subsystem. All money is handled as Decimal in a single
settlement currency.
"""

__version__ = "1.0.0"
