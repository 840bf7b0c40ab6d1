"""Workflow graph executor for WhatsApp chat bots."""

__version__ = "1.0.0"
