"""Durable job orchestration for call recordings and transcript webhooks."""

__version__ = "0.1.0"
