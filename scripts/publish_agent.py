#!/usr/bin/env python3
"""Publish agents to the marketplace catalog, or list what is published.

Writes go to whichever backend BACKEND selects (local libSQL or Supabase).
New agents start unverified, as they do from the web publish form.

Usage examples:
    # Publish with an inline persona
    uv run python scripts/publish_agent.py publish "Math Tutor" \
        --persona "You are a patient math tutor." --category Education

    # Persona from a file, custom pricing
    uv run python scripts/publish_agent.py publish "Contract Reviewer" \
        --persona-file prompts/contracts.txt --input-price 0.01 --output-price 0.03

    # List active agents
    uv run python scripts/publish_agent.py list
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import settings
from src.errors import CollaboratorUnavailable, PersistenceLag
from src.marketplace.catalog import make_agent_id
from src.marketplace.models import Agent
from src.playground.wiring import get_backend

DEFAULT_PROVIDER = "Google"
DEFAULT_INPUT_PRICE = 0.005


def build_agent(args: argparse.Namespace) -> Agent:
    """Turn CLI arguments into an unverified Agent."""
    persona = args.persona or ""
    if args.persona_file:
        persona = Path(args.persona_file).read_text(encoding="utf-8").strip()
    if not persona:
        print("ERROR: a persona is required (--persona or --persona-file)", file=sys.stderr)
        sys.exit(1)

    return Agent(
        id=make_agent_id(),
        name=args.name,
        description=args.description or "",
        category=args.category or "",
        persona=persona,
        provider=args.provider,
        input_price_1k=args.input_price,
        output_price_1k=args.output_price,
        verified=False,
        private=args.private,
        owner_id=args.owner,
    )


def format_agent(agent: Agent) -> str:
    """Format a single agent for display."""
    badge = "verified" if agent.verified else "pending"
    if agent.private:
        badge += ", private"
    return (
        f"{agent.id}  {agent.name:30s} [{agent.category or '-'}] "
        f"{agent.provider or '?'} ${agent.input_price_1k:.4f}/1k ({badge})"
    )


async def _publish(args: argparse.Namespace) -> int:
    agent = build_agent(args)
    try:
        await get_backend().catalog.publish_agent(agent)
    except PersistenceLag as exc:
        print(f"ERROR: publish failed: {exc}", file=sys.stderr)
        return 1
    print(f"Published {agent.name} as {agent.id} (pending verification)")
    return 0


async def _list() -> int:
    try:
        agents = await get_backend().catalog.query_active_agents()
    except CollaboratorUnavailable as exc:
        print(f"ERROR: catalog unavailable: {exc}", file=sys.stderr)
        return 1
    if not agents:
        print("No active agents.")
    for agent in agents:
        print(format_agent(agent))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=f"Manage Glance agents ({settings.backend})")
    sub = parser.add_subparsers(dest="command", required=True)

    pub = sub.add_parser("publish", help="Publish a new agent")
    pub.add_argument("name", help="Display name")
    pub.add_argument("--description", "-d", help="Marketplace blurb")
    pub.add_argument("--category", "-c", help="Grouping label")
    pub.add_argument("--persona", "-p", help="System instruction for every completion")
    pub.add_argument("--persona-file", help="Read the persona from a text file")
    pub.add_argument("--provider", default=DEFAULT_PROVIDER, help="Engine label")
    pub.add_argument("--input-price", type=float, default=DEFAULT_INPUT_PRICE)
    pub.add_argument("--output-price", type=float, default=0.0)
    pub.add_argument("--private", action="store_true", help="Keep out of public listings")
    pub.add_argument("--owner", help="Owner identity ID")

    sub.add_parser("list", help="List active agents")

    args = parser.parse_args()
    if args.command == "publish":
        sys.exit(asyncio.run(_publish(args)))
    sys.exit(asyncio.run(_list()))


if __name__ == "__main__":
    main()
