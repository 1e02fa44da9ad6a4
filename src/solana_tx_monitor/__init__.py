"""Solana Transaction Monitor - confirmation tracking and behavioural anomaly detection."""

__version__ = "0.1.0"
