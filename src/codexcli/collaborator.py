"""AI collaborator - asks a model for a corrected code block."""

import logging
from abc import ABC, abstractmethod

from codexcli.blocks import strip_code_fences
from codexcli.constants import DEFAULT_MODEL_TIMEOUT_S
from codexcli.errors import CollaboratorUnavailable
from codexcli.model_client import Message, ModelClient, ModelClientError, traced_complete

logger = logging.getLogger(__name__)


FIX_SYSTEM_PROMPT = """You are a senior {language} engineer.
Your job is to fix the code so it runs successfully.

Rules:
- Only output the full corrected program in a single fenced code block.
- Do NOT explain.
- Do NOT refactor.
- Fix only what the error requires.
- The program runs non-interactively: stdin is closed."""

# Keep the prompt bounded when a program floods stderr
MAX_ERROR_CHARS = 8000


class FixProposer(ABC):
    """Interface the healing loop uses to obtain revised code."""

    @abstractmethod
    def propose_fix(self, original_code: str, language: str, error_output: str) -> str:
        """
        Return revised source for a failing code block.

        Raises:
            CollaboratorUnavailable: If no usable code could be obtained
        """
        pass


def build_fix_messages(original_code: str, language: str, error_output: str) -> list:
    if len(error_output) > MAX_ERROR_CHARS:
        error_output = "...\n" + error_output[-MAX_ERROR_CHARS:]

    user_prompt = f"""LANGUAGE: {language}

CODE:
```{language}
{original_code.rstrip()}
```

ERROR:
{error_output}"""

    return [
        Message(role="system", content=FIX_SYSTEM_PROMPT.format(language=language)),
        Message(role="user", content=user_prompt),
    ]


class ModelFixProposer(FixProposer):
    """FixProposer backed by a chat-completion ModelClient."""

    def __init__(
        self,
        client: ModelClient,
        model: str,
        timeout: float = DEFAULT_MODEL_TIMEOUT_S,
        trace: bool = False,
    ):
        self.client = client
        self.model = model
        self.timeout = timeout
        self.trace = trace

    def propose_fix(self, original_code: str, language: str, error_output: str) -> str:
        messages = build_fix_messages(original_code, language, error_output)
        logger.info("Asking %s for a %s fix", self.model, language)

        try:
            if self.trace:
                result = traced_complete(
                    self.client,
                    messages,
                    self.model,
                    timeout=self.timeout,
                    phase="fix",
                    metadata={"language": language},
                )
            else:
                result = self.client.complete(messages=messages, model=self.model, timeout=self.timeout)
        except ModelClientError as e:
            raise CollaboratorUnavailable(str(e)) from e

        fixed_code = strip_code_fences(result.content, language)
        if not fixed_code.strip():
            raise CollaboratorUnavailable("Model returned no code")
        return fixed_code
