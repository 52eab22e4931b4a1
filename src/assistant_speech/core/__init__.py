"""Core value types and process-level helpers (locales, logging, messages)."""
