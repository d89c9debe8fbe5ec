"""Telegram bot that records spending entries and reports where the money went."""

__version__ = "1.0.0"
