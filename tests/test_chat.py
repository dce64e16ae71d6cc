"""Tests for the chat loop with a scripted model."""

from codexcli.chat import ChatSession, run_chat
from codexcli.model_client import CompletionResult, ModelClient, ModelClientError

from conftest import posix_only

pytestmark = posix_only


class ScriptedClient(ModelClient):
    def __init__(self, replies=(), error=None):
        self.replies = list(replies)
        self.error = error
        self.prompts = []

    def complete(self, messages, model, timeout=120.0, max_tokens=None):
        self.prompts.append(messages[-1].content)
        if self.error:
            raise ModelClientError(self.error)
        return CompletionResult(content=self.replies.pop(0), model=model)


def _session(engine, client, tmp_path, answer=True, raw=False):
    return ChatSession(engine, client, "llama3.2", tmp_path, raw=raw, confirm=lambda prompt: answer)


class TestHandle:
    def test_reply_blocks_executed_on_confirm(self, make_engine, tmp_path, capsys):
        client = ScriptedClient(replies=["Try this:\n```bash\necho from-block\n```\n"])
        session = _session(make_engine(), client, tmp_path)

        assert session.handle("say hi in bash") is True
        out = capsys.readouterr().out
        assert "AI Response:" in out
        assert "Execution result:" in out
        assert out.count("from-block") == 2
        assert client.prompts == ["say hi in bash"]

    def test_blocks_skipped_when_declined(self, make_engine, tmp_path, capsys):
        client = ScriptedClient(replies=["```bash\necho never-run\n```"])
        session = _session(make_engine(), client, tmp_path, answer=False)
        session.handle("anything")
        out = capsys.readouterr().out
        assert out.count("never-run") == 1  # only in the echoed reply

    def test_raw_mode_prints_reply_only(self, make_engine, tmp_path, capsys):
        client = ScriptedClient(replies=["```bash\necho raw\n```"])
        session = _session(make_engine(), client, tmp_path, raw=True)
        session.handle("anything")
        out = capsys.readouterr().out
        assert "AI Response:" not in out
        assert out.count("echo raw") == 1

    def test_commands_bypass_model(self, make_engine, tmp_path, capsys):
        client = ScriptedClient()
        session = _session(make_engine(), client, tmp_path)
        session.handle("!echo direct")
        assert "direct" in capsys.readouterr().out
        assert client.prompts == []

    def test_model_error_keeps_loop_alive(self, make_engine, tmp_path, capsys):
        session = _session(make_engine(), ScriptedClient(error="Cannot reach Ollama"), tmp_path)
        assert session.handle("hello") is True
        assert "Cannot reach Ollama" in capsys.readouterr().err

    def test_unsupported_block_language(self, make_engine, tmp_path, capsys):
        client = ScriptedClient(replies=["```cobol\nDISPLAY 'HI'.\n```"])
        session = _session(make_engine(), client, tmp_path)
        session.handle("cobol please")
        assert "Unsupported language" in capsys.readouterr().err

    def test_failed_block_shows_description(self, make_engine, tmp_path, capsys):
        client = ScriptedClient(replies=["```bash\necho boom >&2; exit 5\n```"])
        session = _session(make_engine(proposer=None), client, tmp_path)
        session.handle("fail")
        err = capsys.readouterr().err
        assert "exit status 5" in err
        assert "boom" in err


class TestMetaCommands:
    def test_servers_and_stop(self, make_engine, tmp_path, capsys):
        engine = make_engine(server_grace=0.3)
        handle = engine.start_server("bash", "sleeper", tmp_path, code="sleep 60\n")
        session = _session(engine, ScriptedClient(), tmp_path)

        session.handle(":servers")
        assert handle in capsys.readouterr().out

        session.handle(f":stop {handle}")
        assert f"{handle}: STOPPED" in capsys.readouterr().out

    def test_stop_unknown(self, make_engine, tmp_path, capsys):
        session = _session(make_engine(), ScriptedClient(), tmp_path)
        session.handle(":stop proc-42")
        assert "proc-42" in capsys.readouterr().err

    def test_quit(self, make_engine, tmp_path):
        session = _session(make_engine(), ScriptedClient(), tmp_path)
        assert session.handle(":quit") is False


class TestRunChat:
    def test_loop_ends_on_eof_and_stops_servers(self, make_engine, tmp_path):
        engine = make_engine(server_grace=0.3)
        engine.start_server("bash", "sleeper", tmp_path, code="sleep 60\n")
        lines = iter(["", ":servers"])

        def read_line():
            try:
                return next(lines)
            except StopIteration:
                raise EOFError

        run_chat(_session(engine, ScriptedClient(), tmp_path, raw=True), read_line)
        assert engine.list_sessions() == []
