"""Command-line entry point.

Usage:
    python -m deskpilot "Open Notepad and type hello"
    python -m deskpilot --backend gemini --model gemini-2.5-flash -vv "Check the clock"

Connects to a remote session, waits for it to become ready, runs the agent
toward the goal and prints its progress. The session is always ended on exit.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from rich.console import Console

from deskpilot.agent import AgentOrchestrator, AgentResult, AgentResultKind, CloudElementDetector
from deskpilot.channel import CommandChannel, ComputerInterface, ConnectOptions
from deskpilot.config import Config, load_config
from deskpilot.errors import DeskPilotError
from deskpilot.llm import AgentMessage, create_adapter
from deskpilot.logging import get_logger, setup_logging

log = get_logger()
console = Console()
err_console = Console(stderr=True)

_STYLES = {
    AgentResultKind.SCREENSHOT: "dim",
    AgentResultKind.REASONING: "italic cyan",
    AgentResultKind.TOOL_CALL: "yellow",
    AgentResultKind.MESSAGE: "green",
    AgentResultKind.ERROR: "bold red",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deskpilot",
        description="Run a vision agent against a remote desktop session.",
    )
    parser.add_argument("goal", help="What the agent should accomplish")
    parser.add_argument("--model", help="Model identifier for the selected backend")
    parser.add_argument("--backend", choices=["openrouter", "gemini", "litellm"], help="LLM backend")
    parser.add_argument("--max-iterations", type=int, help="Iteration limit for the agent loop")
    parser.add_argument("--project", help="Project directory holding .deskpilot/config.yaml")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    return parser


def apply_arguments(config: Config, args: argparse.Namespace) -> Config:
    """Fold command-line overrides into the loaded configuration."""
    if args.model:
        config.llm.model = args.model
    if args.backend:
        config.llm.backend = args.backend
    if args.max_iterations is not None:
        config.agent.max_iterations = args.max_iterations
    if args.verbose:
        config.logging.verbose = args.verbose
    return config


def render(result: AgentResult) -> str:
    if result.kind is AgentResultKind.SCREENSHOT:
        size = len(result.screenshot or b"")
        return f"[screenshot] {size} bytes, {len(result.elements)} elements"
    if result.kind is AgentResultKind.TOOL_CALL and result.tool_call:
        return f"[tool] {result.tool_call.name} {result.tool_call.arguments}"
    return f"[{result.kind.value}] {result.content or ''}"


async def run(goal: str, config: Config) -> int:
    adapter = create_adapter(config.llm)
    detector = None
    if config.detector.enabled and config.detector.base_url:
        detector = CloudElementDetector(
            config.detector.base_url,
            timeout=config.detector.timeout,
            box_threshold=config.detector.box_threshold,
            iou_threshold=config.detector.iou_threshold,
        )

    exit_code = 0
    async with CommandChannel(config.channel) as channel:
        session = await channel.connect(ConnectOptions.from_config(config.channel))
        log.info("Session %s created, waiting for ready", session.session_id)
        await channel.wait_until_ready()

        orchestrator = AgentOrchestrator(
            adapter,
            ComputerInterface(channel),
            config.agent,
            detector=detector,
        )
        async for result in orchestrator.run([AgentMessage.user(goal)]):
            console.print(render(result), style=_STYLES.get(result.kind), markup=False, highlight=False)
            if result.kind is AgentResultKind.ERROR:
                exit_code = 1
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = apply_arguments(load_config(args.project), args)
    setup_logging(config.logging)

    log.info("Starting deskpilot (backend=%s, model=%s)", config.llm.backend, config.llm.model or "default")
    try:
        return asyncio.run(run(args.goal, config))
    except DeskPilotError as e:
        log.error("Run failed: %s", e)
        err_console.print(f"Error: {e}", style="red", markup=False)
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
