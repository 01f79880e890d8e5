"""CLI entry point: admin client for a running agent service via Rich console.

Usage:
  python cli.py serve                         # Run the HTTP service
  python cli.py agents                        # List every agent
  python cli.py list alice                    # Agents owned by alice
  python cli.py create alice --name Tracker   # Create agent (prompts for key)
  python cli.py chat alice <agent_id>         # Streaming chat
  python cli.py history alice <agent_id>      # Recent conversation
  python cli.py remove alice <agent_id>       # Remove an agent
  python cli.py sweep --hours 24              # Liveness sweep now
  python cli.py wallet                        # Generate a fresh wallet
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config.settings import Settings

console = Console()


class ServiceError(Exception):
    pass


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
        message = body.get("message") or body
    except ValueError:
        message = response.text
    raise ServiceError(f"{response.status_code}: {message}")


def _client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=settings.API_URL, timeout=settings.LLM_TIMEOUT * 4)


def _agents_table(title: str, agents: list[dict]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Owner")
    table.add_column("Address")
    table.add_column("Ready")
    table.add_column("Last active")
    for a in agents:
        ready = "chain+llm" if a["llm_initialized"] else ("chain" if a["initialized"] else "-")
        table.add_row(
            a["agent_id"],
            a["display_name"],
            a["owner_user_id"],
            (a.get("address") or "-")[:18],
            ready,
            a["last_active_at"][:19],
        )
    return table


async def cmd_agents(args, settings: Settings) -> None:
    """List all agents (administrative)."""
    async with _client(settings) as client:
        response = await client.get("/api/agents")
        _raise_for_status(response)
    console.print(_agents_table("All Agents", response.json()["agents"]))


async def cmd_list(args, settings: Settings) -> None:
    """List agents owned by a user."""
    async with _client(settings) as client:
        response = await client.get(f"/api/users/{args.user_id}/agents")
        _raise_for_status(response)
    agents = response.json()["agents"]
    if not agents:
        console.print(f"[dim]{args.user_id} has no agents.[/]")
        return
    console.print(_agents_table(f"Agents of {args.user_id}", agents))


async def cmd_create(args, settings: Settings) -> None:
    """Create a new agent."""
    secret = args.secret or Prompt.ask("Private key (blank = server dev key)", password=True, default="")
    payload = {"user_id": args.user_id, "name": args.name, "private_key": secret or None}
    async with _client(settings) as client:
        response = await client.post("/api/agents", json=payload)
        _raise_for_status(response)
    agent = response.json()["agent"]
    console.print(f"[green]{agent['display_name']} created:[/] {agent['agent_id']}")


async def cmd_chat(args, settings: Settings) -> None:
    """Interactive streaming chat with an agent."""
    async with _client(settings) as client:
        response = await client.get(
            f"/api/agents/{args.agent_id}", params={"user_id": args.user_id},
        )
        _raise_for_status(response)
        agent = response.json()["agent"]

        console.print(Panel(
            f"{agent['display_name']}\n[dim]{agent.get('address') or 'wallet not bound yet'}[/]",
            title="Conversation Started",
            border_style="green",
        ))
        console.print("[dim]Type 'quit' or 'exit' to leave.[/]\n")

        while True:
            try:
                user_input = Prompt.ask("[bold cyan]You[/]")
            except (KeyboardInterrupt, EOFError):
                break
            if user_input.strip().lower() in ("quit", "exit", "/q", "/quit"):
                break
            if not user_input.strip():
                continue

            console.print(f"[bold green]{agent['display_name']}:[/] ", end="")
            try:
                await _stream_reply(client, args, user_input)
            except ServiceError as e:
                console.print(f"[red]Error: {e}[/]")
            console.print()

    console.print("[dim]Conversation ended.[/]")


async def _stream_reply(client: httpx.AsyncClient, args, message: str) -> None:
    payload = {"user_id": args.user_id, "message": message, "stream": True}
    async with client.stream(
        "POST", f"/api/agents/{args.agent_id}/messages", json=payload,
    ) as response:
        if not response.is_success:
            await response.aread()
            _raise_for_status(response)
        event = "message"
        data: list[str] = []
        async for line in response.aiter_lines():
            if line.startswith("event:"):
                event = line[6:].strip()
            elif line.startswith("data:"):
                data.append(line[6:] if line.startswith("data: ") else line[5:])
            elif line == "":
                if event == "error":
                    raise ServiceError(json.loads("\n".join(data)).get("message"))
                if event == "message" and data:
                    console.print("\n".join(data), end="")
                event, data = "message", []


async def cmd_history(args, settings: Settings) -> None:
    """Show recent conversation history for an agent."""
    async with _client(settings) as client:
        response = await client.get(
            f"/api/agents/{args.agent_id}/conversation",
            params={"user_id": args.user_id, "limit": args.limit},
        )
        _raise_for_status(response)
    messages = response.json()["messages"]
    if not messages:
        console.print("[dim]No conversation yet.[/]")
        return
    console.print(Panel(f"{args.agent_id} - Conversation", border_style="yellow"))
    for msg in messages:
        style = {"user": "cyan", "assistant": "green"}.get(msg["role"], "magenta")
        console.print(f"  [{style}]{msg['role']:>9}[/] {msg['content']}")


async def cmd_remove(args, settings: Settings) -> None:
    """Remove an agent and its conversation."""
    async with _client(settings) as client:
        response = await client.delete(
            f"/api/agents/{args.agent_id}", params={"user_id": args.user_id},
        )
        _raise_for_status(response)
    console.print(f"[yellow]Removed {response.json()['removed']} agent.[/]")


async def cmd_sweep(args, settings: Settings) -> None:
    """Run a liveness sweep now."""
    async with _client(settings) as client:
        response = await client.post("/api/admin/sweep", json={"max_age_hours": args.hours})
        _raise_for_status(response)
    console.print(f"[yellow]Sweep removed {response.json()['removed']} idle agents.[/]")


async def cmd_wallet(args, settings: Settings) -> None:
    """Generate a new Aptos wallet."""
    async with _client(settings) as client:
        response = await client.post("/api/wallets")
        _raise_for_status(response)
    wallet = response.json()
    console.print(Panel(
        f"Address:     {wallet['address']}\nPrivate key: {wallet['private_key']}",
        title="New Wallet (store the key safely)",
        border_style="magenta",
    ))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Agent service admin CLI",
        prog="python cli.py",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("serve", help="Run the HTTP service")
    subparsers.add_parser("agents", help="List all agents")

    p_list = subparsers.add_parser("list", help="List a user's agents")
    p_list.add_argument("user_id")

    p_create = subparsers.add_parser("create", help="Create an agent")
    p_create.add_argument("user_id")
    p_create.add_argument("--name", default=None, help="Display name")
    p_create.add_argument("--secret", default=None, help="Private key (prompted if omitted)")

    p_chat = subparsers.add_parser("chat", help="Chat with an agent")
    p_chat.add_argument("user_id")
    p_chat.add_argument("agent_id")

    p_history = subparsers.add_parser("history", help="Conversation history")
    p_history.add_argument("user_id")
    p_history.add_argument("agent_id")
    p_history.add_argument("--limit", type=int, default=20)

    p_remove = subparsers.add_parser("remove", help="Remove an agent")
    p_remove.add_argument("user_id")
    p_remove.add_argument("agent_id")

    p_sweep = subparsers.add_parser("sweep", help="Evict idle agents now")
    p_sweep.add_argument("--hours", type=float, default=None, help="Max idle age")

    subparsers.add_parser("wallet", help="Generate a new wallet")

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    if args.command == "serve":
        from main import main as serve
        serve()
        return

    settings = Settings()
    cmd_map = {
        "agents": cmd_agents,
        "list": cmd_list,
        "create": cmd_create,
        "chat": cmd_chat,
        "history": cmd_history,
        "remove": cmd_remove,
        "sweep": cmd_sweep,
        "wallet": cmd_wallet,
    }

    handler = cmd_map.get(args.command)
    if handler is None:
        parser.print_help()
        return
    try:
        asyncio.run(handler(args, settings))
    except ServiceError as e:
        console.print(f"[red]Error: {e}[/]")
        sys.exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach agent service at {settings.API_URL}: {e}[/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
