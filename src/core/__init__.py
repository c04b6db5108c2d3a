"""Core domain package for albumrelay.

Core contains classification, album grouping, throttling and the relay
control loops without any Telegram, HTTP or filesystem-specific code,
keeping the engine portable between pull and push deployments.
"""
