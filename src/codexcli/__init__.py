"""codexcli - run AI-suggested code blocks locally with self-healing retries."""

__version__ = "0.1.0"
