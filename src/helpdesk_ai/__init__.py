"""Helpdesk AI - resilient multi-provider LLM orchestration."""

__version__ = "0.1.0"
