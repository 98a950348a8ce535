"""Terminal chat against the local Ollama model.

Commands: /clear, /pdf <path>, /quit. Replies are streamed as they arrive.
"""
import logging
import os
import sys

from chat_service import ChatService
from errors import ChatError, DocumentExtractionError, ServerStartupError
from server_manager import ServerManager


LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")


def _write(token: str) -> None:
    sys.stdout.write(token)
    sys.stdout.flush()


def handle_command(service: ChatService, line: str) -> bool:
    """Run a slash command. Returns False when the session should end."""
    cmd, _, arg = line.partition(" ")
    if cmd == "/quit":
        return False
    if cmd == "/clear":
        service.clear_history()
        print("[chat cleared]")
    elif cmd == "/pdf":
        path = arg.strip()
        if not path:
            print("Usage: /pdf <path>")
            return True
        try:
            text = service.load_pdf(path)
        except DocumentExtractionError as exc:
            print(f"[error] Failed to read PDF: {exc}")
        else:
            print(f"[context loaded from {os.path.basename(path)}: {len(text)} chars]")
    else:
        print(f"Unknown command: {cmd}")
    return True


def chat_loop(service: ChatService, lines) -> None:
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        if line.startswith("/"):
            if not handle_command(service, line):
                return
            continue
        sys.stdout.write("assistant> ")
        try:
            response = service.send(line, on_token=_write)
        except ChatError as exc:
            print(f"\n[error] {exc}")
            continue
        print(f"\n[{response.elapsed:.1f}s]")


def _prompts():
    while True:
        try:
            yield input("you> ")
        except EOFError:
            return


def main() -> int:
    logging.basicConfig(level=LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")
    service = ChatService()
    with ServerManager() as manager:
        manager.install_shutdown_hooks()
        try:
            manager.ensure_running(service.is_server_running, lambda msg: print(f"[{msg}]"))
        except ServerStartupError as exc:
            print(f"Failed to connect: {exc}", file=sys.stderr)
            return 1
        print(f"Ready with {service.model}. Commands: /clear, /pdf <path>, /quit")
        try:
            chat_loop(service, _prompts())
        except KeyboardInterrupt:
            print()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
