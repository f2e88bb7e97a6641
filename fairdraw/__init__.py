"""Provably-fair raffle draws on top of SQLAlchemy."""

__version__ = "0.1.0"
