"""
Core business logic package for Focusd.

Contains the headless FocusEngine state machine (core.engine), the
post-session reflection hand-off (core.reflection), the error types
shared by every package (core.errors) and macOS permission checks.
Zero UI dependencies.
"""
