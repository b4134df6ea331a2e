#!/usr/bin/env python3
"""Interactive chat CLI for asking questions about a GitHub repository."""

import json
import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt


class ChatCLI:
    """Interactive chat interface for the repository chat service."""

    def __init__(self, owner: str, repo: str, base_url: str = "http://localhost:8000"):
        """Initialize chat CLI."""
        self.owner = owner
        self.repo = repo
        self.base_url = base_url
        self.conversation_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=httpx.Timeout(60.0, read=None))

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                f"[bold blue]repochat - {self.owner}/{self.repo}[/bold blue]\n"
                "Ask anything about the repository.\n"
                "Commands: /help, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}.[/red]")
            return

        if not self._validate_repository():
            self.console.print(f"[red]Repository {self.owner}/{self.repo} could not be found.[/red]")
            return

        if not self._create_conversation():
            return

        self.console.print(f"[green]Connected, conversation {self.conversation_id}[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/clear":
                    self._send_message("clear")
                    continue
                elif user_input.strip() == "":
                    continue

                self._send_message(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _validate_repository(self) -> bool:
        response = self.client.get(f"{self.base_url}/api/validate-repo/{self.owner}/{self.repo}")
        return response.status_code == 200 and response.json().get("valid", False)

    def _create_conversation(self) -> bool:
        response = self.client.post(f"{self.base_url}/conversations", json={"owner": self.owner, "repo": self.repo})
        if response.status_code != 200:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
            return False
        self.conversation_id = response.json()["conversation_id"]
        return True

    @property
    def _conversation_url(self) -> str:
        return f"{self.base_url}/conversations/{self.conversation_id}"

    def _send_message(self, message: str) -> None:
        """Send a message and render the streamed turn."""
        try:
            with self.client.stream("POST", f"{self._conversation_url}/messages", json={"text": message}) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
                    return

                if response.headers.get("content-type", "").startswith("application/json"):
                    response.read()
                    self.console.print("[yellow]History cleared[/yellow]")
                    return

                completion = self._render_stream(response)

        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return

        while completion and completion.get("finish_reason") == "awaiting-approval":
            completion = self._handle_approvals(completion.get("pending_tool_call_ids", []))

    def _handle_approvals(self, tool_call_ids: list[str]) -> dict | None:
        """Ask for each pending decision, then follow the resumed turn."""
        resumed = False
        for tool_call_id in tool_call_ids:
            approved = Confirm.ask(f"Allow tool call [bold]{tool_call_id}[/bold]?")
            response = self.client.post(
                f"{self._conversation_url}/approvals",
                json={"tool_call_id": tool_call_id, "decision": "yes" if approved else "no"},
            )
            resumed = resumed or response.json().get("resumed", False)

        if not resumed:
            return None

        with self.client.stream("GET", f"{self._conversation_url}/stream", params={"start": 0}) as response:
            return self._render_stream(response)

    def _render_stream(self, response: httpx.Response) -> dict | None:
        """Print tool activity as it happens and the answer once the turn completes."""
        text = ""
        completion = None

        self.console.print("[dim]Thinking...[/dim]")
        for line in response.iter_lines():
            if not line.startswith("data: "):
                continue
            event = json.loads(line[len("data: ") :])
            kind = event["type"]

            if kind == "text-delta":
                text += event["delta"]
            elif kind == "tool-call-ready":
                self.console.print(f"[dim]  {event['tool_name']}({json.dumps(event['input'])})[/dim]")
            elif kind == "tool-result" and event["state"] == "output-error":
                self.console.print(f"[dim red]  {event['tool_name']} failed: {event['error_text']}[/dim red]")
            elif kind == "error":
                self.console.print(f"[red]Model error: {event['message']}[/red]")
            elif kind == "turn-complete":
                completion = event

        if text:
            self._display_response(text)
        if completion and completion["finish_reason"] == "max-rounds":
            self.console.print("[yellow]Stopped after reaching the maximum number of tool rounds.[/yellow]")
        return completion

    def _display_response(self, text: str) -> None:
        """Display AI response with nice formatting."""
        self.console.print(
            Panel(
                Markdown(text),
                title=f"[bold green]{self.owner}/{self.repo}[/bold green]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /clear - Clear the conversation history
• /quit or /exit - Exit the chat

[bold]Example Questions:[/bold]
1. "What does this project do?"
2. "List the root directory"
3. "Where is the HTTP server configured?"
4. "What changed in the last few commits?"
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    if len(sys.argv) < 2 or "/" not in sys.argv[1]:
        print("Usage: chat_cli.py owner/repo [base_url]")
        sys.exit(1)

    owner, repo = sys.argv[1].split("/", 1)
    base_url = sys.argv[2] if len(sys.argv) > 2 else "http://localhost:8000"

    chat = ChatCLI(owner, repo, base_url)
    chat.start()


if __name__ == "__main__":
    main()
