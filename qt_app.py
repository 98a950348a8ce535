"""Qt desktop client for chatting with a local Ollama model.

The window is deliberately small: a status line, a transcript of
markdown-rendered bubbles and a single input row. Talking to the model and
bringing up ``ollama serve`` both happen on worker threads so the event loop
never waits on the network or on the child process.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import time
from typing import Optional

from markdown_it import MarkdownIt
from PyQt6.QtCore import QObject, QThread, QTimer, pyqtSignal
from PyQt6.QtGui import QCloseEvent, QTextOption
from PyQt6.QtWidgets import (
    QApplication,
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QScrollArea,
    QTextBrowser,
    QVBoxLayout,
    QWidget,
)

from chat_service import ChatResponse, ChatService
from errors import ChatError, DocumentExtractionError, ServerStartupError
from server_manager import ServerManager


LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGER = logging.getLogger(__name__)

STATUS_COLORS = {
    "initializing": "orange",
    "checking": "orange",
    "starting": "orange",
    "waiting": "orange",
    "connected": "green",
    "error": "red",
    "pdf-loaded": "#4aa3ff",
}

SPEAKERS = {
    "user": ("You", "#9ec5ff"),
    "assistant": ("Assistant", "#a9b9cc"),
    "system": ("System", "#7f8c9d"),
    "error": ("Error", "#f56b82"),
}


def status_kind(message: str) -> str:
    """Classify a supervisor status message into one of the status states."""
    low = message.lower()
    if low.startswith("starting"):
        return "starting"
    if low.startswith("waiting"):
        return "waiting"
    if "running" in low or "connected" in low:
        return "connected"
    return "checking"


class MarkdownRenderer:
    def __init__(self) -> None:
        self.md = (
            MarkdownIt("commonmark", {"breaks": True, "html": False})
            .enable("table")
            .enable("strikethrough")
        )

    def to_html(self, text: str) -> str:
        return self.md.render(text or "")


markdown_renderer = MarkdownRenderer()


class MessageWidget(QWidget):
    """One transcript bubble."""

    def __init__(self, role: str, content: str, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.role = role
        name, color = SPEAKERS.get(role, SPEAKERS["assistant"])

        layout = QVBoxLayout(self)
        layout.setContentsMargins(12, 6, 12, 6)
        layout.setSpacing(4)

        self.meta = QLabel(name)
        self.meta.setStyleSheet(f"font-weight: 600; color: {color};")
        layout.addWidget(self.meta)

        self.browser = QTextBrowser()
        self.browser.setOpenExternalLinks(True)
        self.browser.setWordWrapMode(QTextOption.WrapMode.WordWrap)
        self.browser.setStyleSheet(
            "QTextBrowser {"
            " background-color: rgba(14,22,34,0.55);"
            " border: 1px solid rgba(158,197,255,0.08);"
            " border-radius: 10px;"
            " padding: 8px;"
            " color: #e6edf6;"
            " font-size: 13px;"
            " }"
        )
        layout.addWidget(self.browser)

        self.set_content(content)

    def set_content(self, content: str) -> None:
        self.browser.setHtml(markdown_renderer.to_html(content))
        self.browser.document().adjustSize()
        self.browser.setFixedHeight(int(self.browser.document().size().height()) + 24)

    def set_label(self, text: str) -> None:
        self.meta.setText(text)


class StartupWorker(QThread):
    status = pyqtSignal(str)
    succeeded = pyqtSignal()
    failed = pyqtSignal(str)

    def __init__(self, manager: ServerManager, service: ChatService, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.manager = manager
        self.service = service

    def run(self) -> None:
        try:
            self.manager.ensure_running(self.service.is_server_running, self.status.emit)
        except ServerStartupError as exc:
            self.failed.emit(str(exc))
            return
        self.succeeded.emit()


class ChatWorker(QThread):
    succeeded = pyqtSignal(object)
    failed = pyqtSignal(str)

    def __init__(self, service: ChatService, prompt: str, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.service = service
        self.prompt = prompt

    def run(self) -> None:
        try:
            response = self.service.send(self.prompt)
        except ChatError as exc:
            self.failed.emit(str(exc))
            return
        self.succeeded.emit(response)


class ChatMainWindow(QMainWindow):
    def __init__(self, service: ChatService, manager: ServerManager) -> None:
        super().__init__()
        self.service = service
        self.manager = manager
        self.setWindowTitle("Local Llama Chat")
        self.resize(800, 600)

        self.worker: Optional[QThread] = None
        self.thinking_widget: Optional[MessageWidget] = None
        self.thinking_started = 0.0
        self.thinking_timer = QTimer(self)
        self.thinking_timer.setInterval(100)
        self.thinking_timer.timeout.connect(self._tick_thinking)

        self._build_ui()
        self._set_status("Initializing...", "initializing")
        QTimer.singleShot(100, self._start_backend)

    # ------------------------------------------------------------------ UI --
    def _build_ui(self) -> None:
        central = QWidget()
        self.setCentralWidget(central)
        main_layout = QVBoxLayout(central)
        main_layout.setContentsMargins(10, 10, 10, 10)
        main_layout.setSpacing(8)

        header = QHBoxLayout()
        main_layout.addLayout(header)

        model_label = QLabel(f"Model: {self.service.model}")
        model_label.setStyleSheet("font-weight: bold;")
        header.addWidget(model_label)

        clear_btn = QPushButton("Clear Chat")
        clear_btn.clicked.connect(self._clear_chat)
        header.addWidget(clear_btn)

        upload_btn = QPushButton("Upload PDF")
        upload_btn.clicked.connect(self._upload_pdf)
        header.addWidget(upload_btn)

        header.addStretch(1)

        self.status_label = QLabel()
        header.addWidget(self.status_label)

        self.chat_scroll = QScrollArea()
        self.chat_scroll.setWidgetResizable(True)
        self.chat_container = QWidget()
        self.chat_layout = QVBoxLayout(self.chat_container)
        self.chat_layout.addStretch(1)
        self.chat_scroll.setWidget(self.chat_container)
        main_layout.addWidget(self.chat_scroll, 1)

        composer = QHBoxLayout()
        main_layout.addLayout(composer)

        self.input_field = QLineEdit()
        self.input_field.setPlaceholderText("Type your message here...")
        self.input_field.returnPressed.connect(self._send_message)
        composer.addWidget(self.input_field, 1)

        self.send_btn = QPushButton("Send")
        self.send_btn.setFixedWidth(80)
        self.send_btn.setEnabled(False)
        self.send_btn.clicked.connect(self._send_message)
        composer.addWidget(self.send_btn)

    def _set_status(self, text: str, kind: str) -> None:
        self.status_label.setText(text)
        self.status_label.setStyleSheet(f"color: {STATUS_COLORS.get(kind, 'orange')};")

    def _add_message(self, role: str, content: str) -> MessageWidget:
        widget = MessageWidget(role, content)
        index = self.chat_layout.count() - 1
        self.chat_layout.insertWidget(index, widget)
        QTimer.singleShot(
            20,
            lambda: self.chat_scroll.verticalScrollBar().setValue(self.chat_scroll.verticalScrollBar().maximum()),
        )
        return widget

    def _set_input_enabled(self, enabled: bool) -> None:
        self.input_field.setEnabled(enabled)
        self.send_btn.setEnabled(enabled)
        if enabled:
            self.input_field.setFocus()

    # ------------------------------------------------------------ backend --
    def _start_backend(self) -> None:
        self._set_status("Checking Ollama...", "checking")
        worker = StartupWorker(self.manager, self.service)
        worker.status.connect(lambda msg: self._set_status(msg, status_kind(msg)))
        worker.succeeded.connect(self._backend_ready)
        worker.failed.connect(self._backend_failed)
        worker.start()
        self._startup_worker = worker

    def _backend_ready(self) -> None:
        self._set_status("Connected", "connected")
        self.send_btn.setEnabled(True)
        self._add_message("system", f"Ready with {self.service.model}")
        LOGGER.info("%s", self.service.describe())

    def _backend_failed(self, err: str) -> None:
        self._set_status("Connection failed", "error")
        QMessageBox.warning(self, "Error", f"Failed to connect: {err}")

    # --------------------------------------------------------------- chat --
    def _send_message(self) -> None:
        if self.worker is not None or not self.send_btn.isEnabled():
            return
        message = self.input_field.text().strip()
        if not message:
            return

        self.input_field.clear()
        self._set_input_enabled(False)
        self._add_message("user", message)

        self.thinking_started = time.monotonic()
        self.thinking_widget = self._add_message("assistant", "_Thinking... 0.0s_")
        self.thinking_timer.start()

        worker = ChatWorker(self.service, message)
        worker.succeeded.connect(self._handle_reply)
        worker.failed.connect(self._handle_error)
        worker.finished.connect(self._worker_finished)
        self.worker = worker
        worker.start()

    def _tick_thinking(self) -> None:
        if self.thinking_widget is None:
            return
        elapsed = time.monotonic() - self.thinking_started
        self.thinking_widget.set_content(f"_Thinking... {elapsed:.1f}s_")

    def _stop_thinking(self) -> Optional[MessageWidget]:
        self.thinking_timer.stop()
        widget, self.thinking_widget = self.thinking_widget, None
        return widget

    def _handle_reply(self, response: ChatResponse) -> None:
        widget = self._stop_thinking()
        if widget is None:
            widget = self._add_message("assistant", "")
        widget.set_label(f"Assistant ({response.elapsed:.1f}s)")
        widget.set_content(response.response or "(no response)")

    def _handle_error(self, err: str) -> None:
        widget = self._stop_thinking()
        if widget is not None:
            widget.deleteLater()
        self._add_message("error", err)

    def _worker_finished(self) -> None:
        if self.worker is not None:
            self.worker.deleteLater()
        self.worker = None
        self._set_input_enabled(True)

    def _clear_chat(self) -> None:
        if self.worker is not None:
            QMessageBox.information(self, "Busy", "Wait for the current reply to finish.")
            return
        while self.chat_layout.count() > 1:
            item = self.chat_layout.takeAt(0)
            w = item.widget()
            if w is not None:
                w.deleteLater()
        self.service.clear_history()
        if self.send_btn.isEnabled():
            self._set_status("Connected", "connected")
        self._add_message("system", "Chat cleared")

    def _upload_pdf(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Select PDF File", filter="PDF Files (*.pdf)")
        if not path:
            return
        try:
            self.service.load_pdf(path)
        except DocumentExtractionError as exc:
            QMessageBox.warning(self, "Error", f"Failed to read PDF: {exc}")
            return
        name = os.path.basename(path)
        self._set_status(f"PDF Loaded: {name}", "pdf-loaded")
        self._add_message("system", f"Context loaded from {name}")

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802
        if self.worker is not None:
            reply = QMessageBox.question(
                self,
                "Quit",
                "A reply is still pending. Quit anyway?",
                QMessageBox.StandardButton.Yes,
                QMessageBox.StandardButton.No,
            )
            if reply != QMessageBox.StandardButton.Yes:
                event.ignore()
                return
        super().closeEvent(event)


def main() -> int:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    with ServerManager() as manager:
        manager.install_shutdown_hooks()

        app = QApplication(sys.argv)
        signal.signal(signal.SIGINT, lambda *_: app.quit())
        # Give the interpreter a chance to run signal handlers while Qt spins.
        heartbeat = QTimer()
        heartbeat.start(250)
        heartbeat.timeout.connect(lambda: None)

        win = ChatMainWindow(ChatService(), manager)
        win.show()
        code = app.exec()
    return code


if __name__ == "__main__":
    raise SystemExit(main())
