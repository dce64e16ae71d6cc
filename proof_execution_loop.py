#!/usr/bin/env python3
"""Proof script for the self-healing execution loop.

Runs a Python snippet with a syntax error through the engine and checks that
the configured model repairs it in one retry.
"""

import tempfile

# Ensure .env is loaded
from dotenv import load_dotenv
load_dotenv()

from codexcli.collaborator import ModelFixProposer
from codexcli.config import ConfigError, configure_logging, load_config
from codexcli.engine import Engine
from codexcli.execution_state import HealingStatus
from codexcli.model_client import get_model_client


def main():
    try:
        config = load_config(require_credentials=True)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return
    configure_logging(config.debug)

    broken_code = '''# Broken Python file
def greet(name):
    print("Hello, " + name  # Missing closing parenthesis

greet("World")
'''

    print(f"=== ORIGINAL CODE ===")
    print(broken_code)

    client = get_model_client(config.provider, api_key=config.openrouter_api_key, host=config.ollama_host)
    engine = Engine(
        proposer=ModelFixProposer(client, config.model, trace=config.trace),
        max_attempts=config.max_attempts,
        timeout=config.timeout,
    )

    print(f"\n=== RUNNING EXECUTION LOOP ({config.provider}: {config.model}) ===")
    with tempfile.TemporaryDirectory(prefix="codexcli_proof_") as workdir:
        session = engine.execute("python", broken_code, workdir)

    final = session.final_result
    print(f"\n=== FINAL SESSION ===")
    print(f"  status: {session.status.value}")
    print(f"  attempts: {len(session.attempts)}/{session.max_attempts}")
    print(f"  exit_code: {final.exit_code if final else None}")
    print(f"  stdout: {final.stdout.strip() if final else None}")
    print(f"  stderr: {final.stderr[:200] if final and final.stderr else None}")

    if session.succeeded:
        print(f"\n=== FIXED CODE ===")
        print(session.last_attempt.block.source)

    print(f"\n{'='*40}")
    if session.status == HealingStatus.SUCCEEDED and len(session.attempts) == 2:
        print("PROOF PASSED: Syntax error fixed in one retry.")
    elif session.succeeded:
        print(f"PROOF PARTIAL: Succeeded after {len(session.attempts)} attempts")
    else:
        print(f"PROOF FAILED: {session.describe()}")


if __name__ == "__main__":
    main()
