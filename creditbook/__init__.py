# creditbook/__init__.py
"""Client credit ledger for a small-business point of sale."""

__version__ = "0.6.0"
