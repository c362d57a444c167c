"""
Command-line interface for taskpilot.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import structlog

from .agent import Agent, RunLogger, estimate_tokens
from .config import Settings, get_settings
from .errors import OperationCancelledError, RetryExhaustedError, TaskpilotError
from .llm import create_llm
from .process import ProcessSupervisor
from .tools import ToolRegistry, create_file_tools, create_shell_tools

logger = structlog.get_logger()

EXIT_COMMANDS = {"/exit", "exit", "quit", "q"}

HELP_TEXT = """
Available commands:
  /help      Show this help message
  /clear     Clear the conversation (keeps the system prompt)
  /history   Show the messages in the current conversation
  /stats     Show conversation and background job statistics
  /exit      Exit (also: exit, quit, q)

Press Ctrl-C while the agent is working to cancel the current run.
"""


def configure_logging(level: str) -> None:
    """Configure structlog for console output at ``level``."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="taskpilot",
        description="taskpilot - a tool-using coding agent for your terminal",
    )
    parser.add_argument("--workspace", "-w", help="Workspace directory (overrides config)")
    parser.add_argument("--config", "-c", help="Path to a YAML config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args()

    if args.config:
        os.environ["TASKPILOT_CONFIG_FILE"] = args.config
        get_settings.cache_clear()

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "config":
        ok = show_config(settings, args.check)
        sys.exit(0 if ok else 1)

    try:
        asyncio.run(run_interactive(settings, args.workspace))
    except TaskpilotError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def load_system_prompt(settings: Settings) -> str | None:
    """Read the configured system prompt file, if any."""
    path = settings.agent.system_prompt_path
    if not path:
        return None
    prompt_file = Path(path).expanduser()
    if not prompt_file.is_file():
        logger.warning("System prompt file not found, using default", path=str(prompt_file))
        return None
    return prompt_file.read_text(encoding="utf-8")


def build_agent(settings: Settings, supervisor: ProcessSupervisor, workspace: Path) -> Agent:
    """Wire the model, tools, and logging into an agent."""
    llm = create_llm(settings.llm)
    tools = ToolRegistry()

    def on_retry(error: Exception, attempt: int) -> None:
        print(f"  LLM call failed (attempt {attempt}): {error}. Retrying...")

    # The agent creates the workspace, so tools bound to it come after
    agent = Agent(
        llm=llm,
        system_prompt=load_system_prompt(settings),
        tools=tools,
        max_steps=settings.agent.max_steps,
        workspace_dir=workspace,
        token_limit=settings.agent.token_limit,
        retry_config=settings.llm.retry.to_retry_config(),
        on_retry=on_retry,
        run_logger=RunLogger(settings.log_dir),
    )

    for tool in create_shell_tools(supervisor):
        tools.register(tool)
    for tool in create_file_tools(agent.workspace_dir):
        tools.register(tool)

    return agent


def print_history(agent: Agent) -> None:
    for i, message in enumerate(agent.history()):
        text = message.content.replace("\n", " ")
        if len(text) > 100:
            text = text[:100] + "..."
        extra = ""
        if message.tool_calls:
            extra = " [tools: " + ", ".join(tc.name for tc in message.tool_calls) + "]"
        print(f"{i:>3} {message.role:<10} {text}{extra}")


async def print_stats(agent: Agent, supervisor: ProcessSupervisor) -> None:
    messages = agent.history()
    counts: dict[str, int] = {}
    for message in messages:
        counts[message.role] = counts.get(message.role, 0) + 1

    print(f"\nMessages: {len(messages)}")
    for role, count in counts.items():
        print(f"  {role}: {count}")
    print(f"Estimated tokens: {estimate_tokens(messages)} / {agent.token_limit}")
    print(f"Background jobs: {len(supervisor.registry)}")
    if agent.run_logger.log_file_path:
        print(f"Run log: {agent.run_logger.log_file_path}")


async def run_interactive(settings: Settings, workspace_override: str | None = None) -> None:
    """Read user turns and run the agent on each, in a single event loop."""
    workspace = Path(workspace_override or settings.agent.workspace_dir).expanduser().resolve()
    supervisor = ProcessSupervisor(workspace_dir=workspace)
    agent = build_agent(settings, supervisor, workspace)

    loop = asyncio.get_running_loop()
    current_cancel: asyncio.Event | None = None

    def on_sigint() -> None:
        if current_cancel is not None and not current_cancel.is_set():
            print("\nCancelling...")
            current_cancel.set()
        else:
            print("\n(use /exit to quit)")

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
        handles_sigint = True
    except (NotImplementedError, RuntimeError):
        handles_sigint = False

    print(f"taskpilot - model: {settings.llm.model} ({settings.llm.provider})")
    print(f"Workspace: {workspace}")
    print("Type /help for commands.\n")

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "You > ")
            except EOFError:
                print()
                break

            text = line.strip()
            if not text:
                continue

            command = text.lower()
            if command in EXIT_COMMANDS:
                break
            if command == "/help":
                print(HELP_TEXT)
                continue
            if command == "/clear":
                agent.reset()
                print("Conversation cleared.")
                continue
            if command == "/history":
                print_history(agent)
                continue
            if command == "/stats":
                await print_stats(agent, supervisor)
                continue

            agent.add_user_message(text)
            current_cancel = asyncio.Event()
            try:
                reply = await agent.run(cancel_event=current_cancel)
                print(f"\nAssistant > {reply}\n")
            except OperationCancelledError:
                print("\nRun cancelled.\n")
            except RetryExhaustedError as e:
                logger.error("Agent run failed", error=str(e))
                print(f"\nError: {e}\n")
            except Exception as e:
                # Retry disabled: the provider error surfaces unchanged
                logger.error("Agent run failed", error=str(e), error_type=type(e).__name__)
                print(f"\nError: {e}\n")
            finally:
                current_cancel = None
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        agent.run_logger.close()
        await supervisor.shutdown()
        print("Goodbye!")


def show_config(settings: Settings, check: bool) -> bool:
    """Show current configuration. Returns False if ``check`` finds errors."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== taskpilot Configuration ===\n")

    print("LLM:")
    print(f"  Provider: {settings.llm.provider}")
    print(f"  Model: {settings.llm.model}")
    print(f"  API Key: {mask(settings.llm.resolved_api_key())}")
    print(f"  Base URL: {settings.llm.base_url or '(provider default)'}")
    print(f"  Max Tokens: {settings.llm.max_tokens}")
    print(f"  Temperature: {settings.llm.temperature}")

    retry = settings.llm.retry
    print("\nRetry:")
    print(f"  Enabled: {retry.enabled}")
    print(f"  Max Retries: {retry.max_retries}")
    print(f"  Delay: {retry.initial_delay}s -> {retry.max_delay}s (x{retry.exponential_base})")

    print("\nAgent:")
    print(f"  Max Steps: {settings.agent.max_steps}")
    print(f"  Workspace: {settings.agent.workspace_dir}")
    print(f"  Token Limit: {settings.agent.token_limit}")
    print(f"  System Prompt: {settings.agent.system_prompt_path or '(built-in)'}")

    print("\nLogging:")
    print(f"  Level: {settings.log_level}")
    print(f"  Run Log Dir: {settings.log_dir}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors = []
    warnings = []

    if not settings.llm.resolved_api_key():
        errors.append(f"No API key for provider '{settings.llm.provider}'")

    prompt_path = settings.agent.system_prompt_path
    if prompt_path and not Path(prompt_path).expanduser().is_file():
        warnings.append(f"System prompt file not found: {prompt_path}")

    if not settings.llm.retry.enabled:
        warnings.append("Retries are disabled - transient model errors will end the run")

    if errors:
        print("Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("Configuration looks good!")
    elif not errors:
        print("\nConfiguration is valid (with warnings)")
    else:
        print("\nConfiguration has errors - fix them before starting")

    return not errors


if __name__ == "__main__":
    main()
