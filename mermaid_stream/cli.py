"""Command-line interface."""

import argparse
import asyncio
import json
import sys
from typing import Optional

from .config import print_config
from .log_utils import setup_logging
from .models import ConversationMessage, DiagramRequestBody

CLI_USER = "cli-user"
CLI_PROJECT = "cli-project"
CLI_BALANCE = 1_000_000_000


class CliSession:
    """One local project driven from the terminal."""

    def __init__(self, diagram_type: str = "flowchart", token_stream=None, settings=None):
        from .persistence import InMemoryArtifactStore
        from .service import DiagramService

        self.store = InMemoryArtifactStore()
        self.store.add_user(CLI_USER, quota_balance=CLI_BALANCE)
        self.store.add_project(CLI_PROJECT, owner_id=CLI_USER, diagram_type=diagram_type)
        self.service = DiagramService(store=self.store, token_stream=token_stream, settings=settings)
        self.diagram_type = diagram_type
        self.chat: list[ConversationMessage] = []
        self.current: Optional[str] = None
        self.last_prompt: Optional[str] = None
        self.last_failure: Optional[str] = None

    async def send(self, prompt: str, is_retry: bool = False, as_json: bool = False) -> bool:
        body = DiagramRequestBody(
            text_prompt=prompt,
            diagram_type=self.diagram_type,
            project_id=CLI_PROJECT,
            chat_history=self.chat,
            is_retry=is_retry,
            failure_reason=self.last_failure if is_retry else None,
        )
        prepared = await self.service.prepare(body, CLI_USER)
        self.last_prompt = prompt

        shown = ""
        terminal: dict = {}
        async for event in self.service.stream(prepared):
            if event.get("isComplete") and not event.get("autoRetry"):
                terminal = event
            if as_json:
                print(json.dumps(event))
                continue
            if not event.get("isComplete"):
                text = event["mermaidSyntax"]
                print(text[len(shown):], end="", flush=True)
                shown = text
            elif event.get("error"):
                print(f"\nFAILED ({event['errorKind']}): {event['errorMessage']}")
                if event.get("autoRetry"):
                    print("Retrying automatically...")
                    shown = ""
            else:
                print(f"\nSUCCESS ({event.get('artifactId', 'not saved')})\n")
                print(event["mermaidSyntax"])

        if terminal and not terminal.get("error"):
            self.current = terminal["mermaidSyntax"]
            self.last_failure = None
            self.chat.append(ConversationMessage(role="user", content=prompt))
            self.chat.append(ConversationMessage(role="assistant", content=f"```mermaid\n{self.current}\n```"))
            return True

        self.last_failure = terminal.get("errorMessage")
        if terminal.get("needsRetry") and not as_json:
            print("Type 'retry' to try again with simpler syntax.")
        return False


async def run_once(prompt: str, diagram_type: str, as_json: bool = False) -> int:
    """Run one logical request and print its events."""
    session = CliSession(diagram_type)
    success = await session.send(prompt, as_json=as_json)
    return 0 if success else 1


async def run_interactive(diagram_type: str):
    """Run an interactive session; follow-up prompts modify the current diagram."""
    print("=" * 60)
    print(f"mermaid-stream - {diagram_type}")
    print("=" * 60)
    print_config()
    print("\nDescribe your diagram. Commands: quit, show, history, retry\n")

    session = CliSession(diagram_type)

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (EOFError, KeyboardInterrupt):
            break

        if not user_input:
            continue
        if user_input.lower() == 'quit':
            break
        if user_input.lower() == 'show':
            print(session.current or "No diagram yet.")
            continue
        if user_input.lower() == 'history':
            entries = session.store.history(CLI_PROJECT)
            if not entries:
                print("No history yet.")
            for i, entry in enumerate(entries):
                print(f"  [{i}] {entry.timestamp:%H:%M:%S} {entry.kind.value}: {entry.prompt}")
            continue
        if user_input.lower() == 'retry':
            if not session.last_prompt:
                print("Nothing to retry.")
                continue
            await session.send(session.last_prompt, is_retry=True)
            continue

        print("Generating...")
        await session.send(user_input)


def list_types():
    from .registry import get_default_registry

    for definition in get_default_registry():
        aliases = f" (aliases: {', '.join(definition.aliases)})" if definition.aliases else ""
        print(f"{definition.id:<14} {definition.canonical_declaration}{aliases}")


def serve(host: str, port: int):
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(), host=host, port=port)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="mermaid-stream",
        description="Streaming LLM to Mermaid diagram generation"
    )
    parser.add_argument(
        "--prompt", "-p",
        type=str,
        help="Generate one diagram for this prompt and exit"
    )
    parser.add_argument(
        "--type", "-t",
        type=str,
        default="flowchart",
        help="Diagram type (see --list-types)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print raw stream events as JSON lines"
    )
    parser.add_argument(
        "--list-types",
        action="store_true",
        help="List supported diagram types and exit"
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP server"
    )
    parser.add_argument("--host", default="127.0.0.1", help="Server host")
    parser.add_argument("--port", type=int, default=8000, help="Server port")
    parser.add_argument(
        "--config", "-c",
        action="store_true",
        help="Show config and exit"
    )
    args = parser.parse_args()

    setup_logging()

    if args.config:
        print_config()
        return
    if args.list_types:
        list_types()
        return
    if args.serve:
        serve(args.host, args.port)
        return

    from .errors import UnknownDiagramTypeError
    from .registry import get_default_registry

    try:
        diagram_type = get_default_registry().resolve(args.type).id
    except UnknownDiagramTypeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.prompt:
        sys.exit(asyncio.run(run_once(args.prompt, diagram_type, args.json)))

    asyncio.run(run_interactive(diagram_type))


if __name__ == "__main__":
    main()
