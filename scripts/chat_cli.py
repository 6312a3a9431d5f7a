#!/usr/bin/env python3
"""Interactive chat CLI for the CampusGuide service."""

import json
import sys
from pathlib import Path

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

APPROVE = "Yes, confirmed."
DENY = "No, denied."


class ChatCLI:
    """Interactive chat interface streaming the assistant's turns."""

    def __init__(self, base_url: str = "http://localhost:8000"):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.session_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=120.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]🎓 CampusGuide - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the assistant.\n"
                "Commands: /help, /profile <file>, /history, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to CampusGuide[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                command = user_input.strip().lower()

                if command in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                    continue
                elif command == "/clear":
                    self.session_id = None
                    self.console.print("[yellow]🔄 Session cleared[/yellow]")
                    continue
                elif command == "/history":
                    self._show_history()
                    continue
                elif command.startswith("/profile"):
                    self._ingest_profile(user_input.strip()[len("/profile") :].strip())
                    continue
                elif command == "":
                    continue

                self._run_turn({"message": user_input})

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _run_turn(self, payload: dict) -> None:
        """Stream one turn, then answer any confirmations it asks for."""
        while payload is not None:
            if self.session_id:
                payload["session_id"] = self.session_id
            pending = self._stream(payload)
            payload = self._ask_confirmations(pending) if pending else None

    def _stream(self, payload: dict) -> list[dict]:
        """Render a streamed turn and return the tool calls awaiting confirmation."""
        pending: list[dict] = []
        text = ""
        try:
            with self.client.stream("POST", f"{self.base_url}/conversation/stream", json=payload) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
                    return []

                self.session_id = response.headers.get("x-session-id", self.session_id)
                for line in response.iter_lines():
                    if not line:
                        continue
                    event = json.loads(line)
                    kind = event.get("type")

                    if kind == "text-delta":
                        text += event["text"]
                        self.console.print(event["text"], end="", highlight=False)
                    elif kind == "tool-status":
                        self._show_tool_status(event)
                        if event["status"] == "pending-confirmation":
                            pending.append(event)
                    elif kind == "tool-progress":
                        self.console.print(f"\n[dim]⏳ {event['tool_name']}: {event['message']}[/dim]")
                    elif kind == "warning":
                        self.console.print(f"\n[yellow]⚠️  {event['message']}[/yellow]")
                    elif kind == "error":
                        self.console.print(f"\n[red]❌ {event['message']}[/red]")
                    elif kind == "finish" and event.get("stop_reason") == "step_ceiling":
                        self.console.print("\n[yellow]The assistant stopped after too many steps.[/yellow]")

        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return []

        if text:
            self.console.print()
        return pending

    def _show_tool_status(self, event: dict) -> None:
        status = event["status"]
        if status == "requested":
            self.console.print(f"\n[dim]🔧 {event['tool_name']} requested[/dim]")
        elif status == "executed":
            self.console.print(f"\n[green]✅ {event['tool_name']}[/green] [dim]{event.get('output') or ''}[/dim]")
        elif status in ("errored", "rejected"):
            self.console.print(f"\n[red]✖ {event['tool_name']}[/red] [dim]{event.get('output') or ''}[/dim]")

    def _ask_confirmations(self, pending: list[dict]) -> dict:
        """Ask the user to approve or deny every pending tool call."""
        confirmations = []
        for event in pending:
            arguments = json.dumps(event.get("arguments") or {}, indent=2)
            self.console.print(
                Panel(
                    f"[bold]{event['tool_name']}[/bold]\n{arguments}",
                    title="[yellow]Approval required[/yellow]",
                    border_style="yellow",
                )
            )
            approved = Confirm.ask("Run this tool?")
            confirmations.append({"call_id": event["call_id"], "answer": APPROVE if approved else DENY})
        return {"confirmations": confirmations}

    def _ingest_profile(self, path: str) -> None:
        """Build a profile from an application text file and attach it to the session."""
        if not path:
            self.console.print("[red]Usage: /profile <path to application text>[/red]")
            return
        try:
            raw_text = Path(path).read_text()
        except OSError as e:
            self.console.print(f"[red]❌ Could not read {path}: {e}[/red]")
            return

        if not self.session_id:
            # Profiles attach to an existing session, so open one first
            self._run_turn({"message": "Hi!"})

        try:
            response = self.client.post(
                f"{self.base_url}/api/ingest-profile",
                content=raw_text.encode(),
                params={"session_id": self.session_id} if self.session_id else None,
                headers={"Content-Type": "text/plain"},
            )
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return

        if response.status_code != 200:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
            return

        profile = response.json()
        summary = "\n".join(f"[bold]{key}[/bold]: {value}" for key, value in profile.items())
        self.console.print(Panel(summary, title="[green]Profile attached[/green]", border_style="green"))

    def _show_history(self) -> None:
        if not self.session_id:
            self.console.print("[yellow]No conversation yet[/yellow]")
            return
        response = self.client.get(f"{self.base_url}/conversation/{self.session_id}/messages")
        if response.status_code != 200:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
            return

        for message in response.json()["messages"]:
            text = "".join(part["text"] for part in message["parts"] if part["type"] == "text")
            if text:
                self.console.print(Panel(Markdown(text), title=message["role"], border_style="dim"))

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /profile <file> - Build your student profile from application text
• /history - Show the stored conversation
• /clear - Clear session and start over
• /quit or /exit - Exit the chat

[bold]Example Conversation:[/bold]
1. "Hi, can you help me plan my week?"
2. "Remind me to finish my essay draft in 30 minutes"
3. "What do I have scheduled?"
4. "Cancel that reminder" (you will be asked to approve)
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    chat = ChatCLI(base_url)
    chat.start()


if __name__ == "__main__":
    main()
