"""Core domain package for dmpilot.

Core contains identity normalization, classification, rule matching, routing
and the reply queue without any Telegram or storage-specific code, keeping
the orchestration logic portable across chat surfaces.
"""
