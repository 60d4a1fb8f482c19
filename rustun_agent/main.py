"""
Command-line entry point - interactive chat with the Rustun agent.

Runs the orchestrator in-process against the configured route storage and
LLM provider. Conversation history is kept by this loop and re-sent with
every request.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from rustun_agent.chat import AgentChatRequest, ChatOrchestrator, HistoryMessage
from rustun_agent.chat.logging_utils import configure_logging
from rustun_agent.chat.tool_registry import CapabilityRegistry
from rustun_agent.clients import LLMClient
from rustun_agent.config import Configuration
from rustun_agent.routes import create_route_service

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  help        show this help
  clear       forget the conversation history
  exit, quit  leave

Anything else is sent to the assistant, e.g.:
  list all clusters
  create a client named Laptop in cluster prod
  what is P2P mode?"""


class ChatSession:
    """One interactive session: history plus the cancel signal of the running turn."""

    def __init__(self, orchestrator: ChatOrchestrator, stream: bool = True) -> None:
        self.orchestrator = orchestrator
        self.stream = stream
        self.history: list[HistoryMessage] = []
        self.active_cancel: asyncio.Event | None = None

    def cancel_active_turn(self) -> None:
        if self.active_cancel is not None and not self.active_cancel.is_set():
            self.active_cancel.set()
        else:
            print("\n(type 'exit' to quit)", flush=True)

    async def send(self, message: str) -> str | None:
        """Send one message, print the reply, and record the turn on success."""
        request = AgentChatRequest(message=message, history=list(self.history))
        self.active_cancel = asyncio.Event()
        try:
            if self.stream:
                answer = await self._send_streaming(request, self.active_cancel)
            else:
                answer = await self._send_blocking(request, self.active_cancel)
        finally:
            self.active_cancel = None

        if answer is not None:
            self.history.append(HistoryMessage(role="user", content=message))
            self.history.append(HistoryMessage(role="assistant", content=answer))
        return answer

    async def _send_blocking(self, request: AgentChatRequest, cancel: asyncio.Event) -> str | None:
        response = await self.orchestrator.handle_chat_request(request, cancel)
        for call in response.tool_calls:
            print(f"  [tool] {call.tool}({call.arguments})")
        if response.error:
            print(f"Error: {response.error}")
            return None
        print(f"Assistant: {response.message}")
        return response.message

    async def _send_streaming(self, request: AgentChatRequest, cancel: asyncio.Event) -> str | None:
        print("Assistant: ", end="", flush=True)
        answer: str | None = None
        async for event in self.orchestrator.chat_stream(request, cancel):
            if event.type == "content" and event.content:
                print(event.content, end="", flush=True)
            elif event.type == "tool_call" and event.tool_call:
                print(f"\n  [tool] {event.tool_call.tool}({event.tool_call.arguments})", flush=True)
            elif event.type == "done":
                answer = event.full_message or ""
                print()
            elif event.type == "error":
                print(f"\nError: {event.error}")
        return answer

    def clear(self) -> None:
        self.history.clear()


async def run_repl(session: ChatSession) -> None:
    print("Rustun AI assistant. Type 'help' for commands.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except EOFError:
            print("\nBye!")
            break

        if not user_input:
            continue

        command = user_input.lower()
        if command in ("exit", "quit"):
            print("Bye!")
            break
        if command == "help":
            print(HELP_TEXT)
            continue
        if command == "clear":
            session.clear()
            print("  [History cleared]")
            continue

        await session.send(user_input)
        print()


# Configure logging for the application
logging.basicConfig(level=logging.WARNING, format="%(asctime)s - %(levelname)s - %(message)s")


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rustun AI assistant")
    parser.add_argument("--message", "-m", help="send a single message and exit")
    parser.add_argument("--no-stream", action="store_true", help="use blocking requests instead of streaming")
    parser.add_argument("--config", help="YAML file merged over the packaged defaults")
    args = parser.parse_args(argv)

    config = Configuration(args.config)
    configure_logging(config.get_logging_config())
    logger.info("Starting Rustun agent with provider %s", config.active_provider)

    route_service = await create_route_service(config)
    registry = CapabilityRegistry(route_service)

    async with LLMClient(config) as llm_client:
        orchestrator = ChatOrchestrator(
            ChatOrchestrator.ChatOrchestratorConfig(
                llm_client=llm_client,
                registry=registry,
                configuration=config,
            )
        )
        await orchestrator.initialize()
        session = ChatSession(orchestrator, stream=not args.no_stream)

        # Ctrl+C cancels the running turn instead of killing the process
        if sys.platform != "win32":
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, session.cancel_active_turn)

        if args.message:
            answer = await session.send(args.message)
            return 0 if answer is not None else 1

        await run_repl(session)

    return 0


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
