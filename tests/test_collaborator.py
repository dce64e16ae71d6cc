"""Tests for fenced-block handling and the model-backed fix proposer."""

import pytest

from codexcli.blocks import extract_code_blocks, strip_code_fences
from codexcli.collaborator import MAX_ERROR_CHARS, ModelFixProposer, build_fix_messages
from codexcli.errors import CollaboratorUnavailable
from codexcli.model_client import CompletionResult, ModelClient, ModelClientError


class ScriptedClient(ModelClient):
    """ModelClient returning a fixed reply (or raising)."""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    def complete(self, messages, model, timeout=120.0, max_tokens=None):
        self.requests.append((messages, model, timeout))
        if self.error:
            raise ModelClientError(self.error)
        return CompletionResult(content=self.reply, model=model)


class TestExtractCodeBlocks:
    def test_blocks_with_tags_in_order(self):
        reply = (
            "Here you go:\n"
            "```python\nprint('a')\n```\n"
            "and a shell version\n"
            "```Bash\necho a\n```\n"
        )
        assert extract_code_blocks(reply) == [("python", "print('a')\n"), ("bash", "echo a\n")]

    def test_untagged_block(self):
        assert extract_code_blocks("```\nls\n```") == [("", "ls\n")]

    def test_unterminated_block_dropped(self):
        assert extract_code_blocks("```python\nprint(1)\n") == []

    def test_no_blocks(self):
        assert extract_code_blocks("Just prose.") == []


class TestStripCodeFences:
    def test_prefers_matching_language(self):
        reply = "```bash\npip install x\n```\n```py\nprint('fixed')\n```"
        assert strip_code_fences(reply, "python") == "print('fixed')\n"

    def test_first_block_when_no_match(self):
        reply = "```js\nconsole.log(1)\n```"
        assert strip_code_fences(reply, "python") == "console.log(1)\n"

    def test_bare_reply_is_code(self):
        assert strip_code_fences("  print('x')  \n") == "print('x')\n"

    def test_empty_reply(self):
        assert strip_code_fences("   ") == ""


class TestBuildFixMessages:
    def test_system_and_user_messages(self):
        messages = build_fix_messages("print(1/0)\n", "python", "ZeroDivisionError")
        assert [m.role for m in messages] == ["system", "user"]
        assert "python engineer" in messages[0].content
        assert "```python\nprint(1/0)\n```" in messages[1].content
        assert "ZeroDivisionError" in messages[1].content

    def test_long_error_output_is_clipped_to_tail(self):
        error = "x" * (MAX_ERROR_CHARS * 2) + "THE END"
        user = build_fix_messages("code", "bash", error)[1].content
        assert "THE END" in user
        assert len(user) < MAX_ERROR_CHARS + 500


class TestModelFixProposer:
    def test_returns_code_from_fenced_reply(self):
        client = ScriptedClient(reply="Fixed:\n```python\nprint(1)\n```\n")
        proposer = ModelFixProposer(client, "llama3.2", timeout=5)
        assert proposer.propose_fix("print(1/0)", "python", "ZeroDivisionError") == "print(1)\n"
        _, model, timeout = client.requests[0]
        assert model == "llama3.2"
        assert timeout == 5

    def test_client_error_becomes_unavailable(self):
        proposer = ModelFixProposer(ScriptedClient(error="Cannot reach Ollama"), "llama3.2")
        with pytest.raises(CollaboratorUnavailable, match="Cannot reach Ollama"):
            proposer.propose_fix("x", "python", "err")

    def test_empty_reply_is_unavailable(self):
        proposer = ModelFixProposer(ScriptedClient(reply="```python\n```"), "llama3.2")
        with pytest.raises(CollaboratorUnavailable):
            proposer.propose_fix("x", "python", "err")
