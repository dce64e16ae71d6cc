"""Constants for the execution engine."""

import os

# Hidden directory (relative to the workdir) holding per-language environments
ENGINE_DIRNAME = ".codexcli"

# Healing loop: total executions per session, including the first one
DEFAULT_MAX_ATTEMPTS = 3

# One-shot execution timeout (seconds)
DEFAULT_TIMEOUT_S = 60.0

# Per-stream capture cap (bytes)
DEFAULT_OUTPUT_CAP = 64 * 1024

# Environment creation / package installation timeout (seconds)
DEFAULT_SETUP_TIMEOUT_S = float(os.getenv("CODEXCLI_SETUP_TIMEOUT_S", "300"))

# Servers: how long a freshly started process must stay up to count as healthy
DEFAULT_SERVER_GRACE_S = 1.5

# Tracker: how long to wait after SIGTERM before escalating to SIGKILL
DEFAULT_STOP_GRACE_S = 5.0

# Tracker: exited processes remembered after `list` reported them (oldest dropped first)
MAX_REAPED_PROCESSES = 32

# Default port for the `start-server` workflow
DEFAULT_SERVER_PORT = 8000

# Model defaults
DEFAULT_PROVIDER = "ollama"
DEFAULT_OLLAMA_MODEL = "llama3.2"
DEFAULT_OPENROUTER_MODEL = "openai/gpt-4o-mini"
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_MODEL_TIMEOUT_S = 120.0
