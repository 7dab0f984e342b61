"""Main application for askpanel - ask by voice or text, hear the answer."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from .answers.client import AnswerClient
from .answers.models import AnswerSet, Attachment, PendingSubmission
from .answers.orchestrator import SubmissionOrchestrator
from .config import Config, load_config
from .errors import CapabilityUnavailable
from .speech.capture import CaptureSession
from .speech.playback import PlaybackSession, PlaybackState
from .speech.recognizer import WhisperRecognizer, create_recognizer
from .speech.synthesizer import create_synthesizer
from .web.api import create_app, set_askpanel_instance

logger = logging.getLogger(__name__)


class AskPanel:
    """Main application: wires capture, playback and submission together."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Initialize components
        self._init_speech()
        self._init_answers()

        # Capture hands finalized utterances to the orchestrator
        self.capture.on_utterance(self.orchestrator.submit_utterance)

        # Web server
        self._web_server: Optional[uvicorn.Server] = None
        self._web_task: Optional[asyncio.Task] = None

    def _init_speech(self) -> None:
        """Initialize speech sessions, degrading to text-only where needed."""
        logger.info("Initializing speech...")
        try:
            recognizer = create_recognizer(self.config.speech)
        except CapabilityUnavailable as e:
            logger.warning(f"Voice input disabled: {e}")
            recognizer = None
        self.capture = CaptureSession(self.config.speech, recognizer)

        try:
            synthesizer = create_synthesizer(self.config.playback)
        except CapabilityUnavailable as e:
            logger.warning(f"Voice playback disabled: {e}")
            synthesizer = None
        self.playback = PlaybackSession(self.config.playback, synthesizer)

    def _init_answers(self) -> None:
        """Initialize the backend client and submission orchestrator."""
        logger.info(f"Answer backend: {self.config.backend.ask_url}")
        self.client = AnswerClient(self.config.backend)
        self.orchestrator = SubmissionOrchestrator(self.client)

    def speak_answer(self, provider: Optional[str] = None) -> Optional[str]:
        """Read back the stored answers, preferring ``provider``."""
        return self.playback.speak_answer(self.orchestrator.answers, preferred=provider)

    async def ask(
        self,
        question: str,
        file_path: Optional[str] = None,
        speak: bool = False,
    ) -> Optional[AnswerSet]:
        """One-shot: submit a question, wait for answers, optionally speak one."""
        attachment = Attachment.from_path(file_path) if file_path else None
        accepted = await self.orchestrator.submit(PendingSubmission(question, attachment))
        if not accepted:
            logger.warning("Nothing to ask")
            return None

        answers = self.orchestrator.answers
        if answers is not None and speak:
            await self._speak_and_wait()
        return answers

    async def _speak_and_wait(self) -> None:
        done = asyncio.Event()

        def on_playback(state: PlaybackState) -> None:
            if not state.speaking:
                done.set()

        self.playback.on_change(on_playback)
        try:
            if self.speak_answer() is not None:
                await done.wait()
        finally:
            self.playback.remove_on_change(on_playback)

    def _start_web_server(self, host: str, port: int) -> None:
        """Serve the web view on the running event loop."""
        logger.info(f"Starting web server on {host}:{port}...")

        set_askpanel_instance(self)
        app = create_app()

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._web_server = uvicorn.Server(config)
        self._web_task = asyncio.get_running_loop().create_task(self._web_server.serve())

        logger.info(f"Web server started at http://{host}:{port}")

    def request_shutdown(self) -> None:
        """Ask a running ``serve()`` to return."""
        self._shutdown_event.set()

    async def serve(self, enable_web: bool = True, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Run until shutdown is requested or the web server exits."""
        if self._running:
            logger.warning("askpanel already running")
            return

        self._running = True
        self._shutdown_event.clear()

        try:
            if enable_web:
                self._start_web_server(host or self.config.web.host, port or self.config.web.port)
                waiter = asyncio.get_running_loop().create_task(self._shutdown_event.wait())
                await asyncio.wait({self._web_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
                waiter.cancel()
            else:
                loop = asyncio.get_running_loop()
                for signum in (signal.SIGINT, signal.SIGTERM):
                    try:
                        loop.add_signal_handler(signum, self.request_shutdown)
                    except (NotImplementedError, RuntimeError):
                        pass
                await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop all components gracefully."""
        logger.info("Stopping askpanel...")
        self._running = False

        if self._web_server is not None:
            self._web_server.should_exit = True
            if self._web_task is not None:
                await asyncio.gather(self._web_task, return_exceptions=True)
            self._web_server = None
            self._web_task = None

        self.capture.close()
        if self.playback.speaking:
            self.playback.stop()

        await self.orchestrator.drain()
        await self.client.aclose()

        logger.info("askpanel stopped")

    def get_status(self) -> dict:
        """Get current status of all components."""
        answers = self.orchestrator.answers
        return {
            "running": self._running,
            "capture": {
                "supported": self.capture.supported,
                "listening": self.capture.listening,
            },
            "playback": {
                "supported": self.playback.supported,
                "speaking": self.playback.speaking,
            },
            "submission": {
                "loading": self.orchestrator.loading,
                "providers": answers.providers if answers is not None else [],
            },
        }


def print_answers(answers: AnswerSet, providers: dict[str, str]) -> None:
    """Print an AnswerSet to stdout."""
    for key, text in answers.results.items():
        print(f"== {providers.get(key, key)} ==")
        print(text.strip())
        print()
    if answers.conclusion:
        print("== Conclusion ==")
        print(answers.conclusion.strip())
        print()
    for i, source in enumerate(answers.sources):
        print(f"[{i}] {source.title} ({source.date}) {source.url}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="askpanel - ask several AIs by voice or text")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: $ASKPANEL_CONFIG or config/settings.yaml)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Web server host",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Web server port",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable web server",
    )
    parser.add_argument(
        "--list-audio",
        action="store_true",
        help="List available audio input devices",
    )
    parser.add_argument(
        "--ask",
        metavar="QUESTION",
        help="Ask one question, print the answers and exit",
    )
    parser.add_argument(
        "--file",
        help="File to attach to --ask",
    )
    parser.add_argument(
        "--speak",
        action="store_true",
        help="Read back the answer to --ask",
    )
    args = parser.parse_args()

    if args.list_audio:
        print("Available audio devices:")
        for dev in WhisperRecognizer.list_devices():
            print(f"  [{dev['id']}] {dev['name']} ({dev['channels']}ch)")
        return

    config = load_config(args.config)
    config.setup_logging()

    if args.ask is not None or args.file:
        sys.exit(asyncio.run(_run_ask(config, args.ask or "", args.file, args.speak)))

    try:
        asyncio.run(_run_serve(config, not args.no_web, args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")


async def _run_ask(config: Config, question: str, file_path: Optional[str], speak: bool) -> int:
    app = AskPanel(config)
    try:
        answers = await app.ask(question, file_path=file_path, speak=speak)
    finally:
        await app.shutdown()

    if answers is None:
        print("No answers received.", file=sys.stderr)
        return 1
    print_answers(answers, config.backend.providers)
    return 0


async def _run_serve(config: Config, enable_web: bool, host: Optional[str], port: Optional[int]) -> None:
    logger.info("=" * 50)
    logger.info("askpanel")
    logger.info("=" * 50)

    app = AskPanel(config)
    await app.serve(enable_web=enable_web, host=host, port=port)


if __name__ == "__main__":
    main()
