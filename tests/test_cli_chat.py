from chat_service import ChatService
from cli_chat import chat_loop, handle_command


class EchoClient:
    timeout = 1.0

    def __init__(self, fail=False):
        self.fail = fail

    def list_models(self):
        return []

    def chat(self, request, on_token=None):
        if self.fail:
            raise ConnectionError("refused")
        reply = f"echo: {request.messages[-1].content}"
        if on_token:
            on_token(reply)
        return reply


def test_chat_loop_streams_and_stops_on_quit(capsys):
    service = ChatService(client=EchoClient())
    chat_loop(service, ["hi", "", "/quit", "never sent"])

    out = capsys.readouterr().out
    assert "assistant> echo: hi" in out
    assert service.history_size() == 2


def test_chat_loop_reports_backend_errors(capsys):
    service = ChatService(client=EchoClient(fail=True), model="m")
    chat_loop(service, ["hi"])

    assert "[error] Failed to communicate with Ollama model: m" in capsys.readouterr().out
    assert service.history_size() == 1


def test_clear_command_resets_history_and_context():
    service = ChatService(client=EchoClient())
    service.set_context("doc")
    service.send("hi")
    assert handle_command(service, "/clear") is True
    assert service.history_size() == 0
    assert service.context is None


def test_pdf_command_reports_failure(capsys, tmp_path):
    service = ChatService(client=EchoClient())
    service.set_context("kept")
    handle_command(service, f"/pdf {tmp_path / 'missing.pdf'}")

    assert "Failed to read PDF" in capsys.readouterr().out
    assert service.context == "kept"


def test_pdf_command_loads_context(capsys, monkeypatch):
    service = ChatService(client=EchoClient())
    original = service.load_pdf
    monkeypatch.setattr(service, "load_pdf", lambda path: original(path, extractor=lambda p: "pdf body"))

    handle_command(service, "/pdf /docs/report.pdf")

    assert service.context == "pdf body"
    assert "context loaded from report.pdf" in capsys.readouterr().out


def test_unknown_and_bare_commands(capsys):
    service = ChatService(client=EchoClient())
    assert handle_command(service, "/pdf") is True
    assert handle_command(service, "/nope") is True
    assert handle_command(service, "/quit") is False
    out = capsys.readouterr().out
    assert "Usage: /pdf <path>" in out
    assert "Unknown command: /nope" in out
