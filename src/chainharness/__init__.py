"""chainharness — run blockchain node and relayer software in ephemeral containers."""

__version__ = "0.1.0"
