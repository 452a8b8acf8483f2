import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.text import Text

from relay_loop.app_config import load_json_config, parse_app_config, resolve_runtime_env
from relay_loop.bootstrap import AppRuntime, bootstrap_runtime
from relay_loop.errors import RelayLoopError
from relay_loop.models import SessionResult
from relay_loop.session import Session
from relay_loop.store import fail_stale_sessions, prune_sessions


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relay-loop", description="Run and inspect LLM sessions.")
    parser.add_argument("--config", default=None, help="Path to config.json (default: ./config.json)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a single session")
    run.add_argument("--name", default="cli")
    run.add_argument("--system-prompt", default="")
    run.add_argument("--message", required=True)
    run.add_argument("--tool", action="append", default=[], dest="tools")
    run.add_argument("--middleware", action="append", default=[])
    run.add_argument("--model", default=None)
    run.add_argument("--max-turns", type=int, default=None)
    run.add_argument("--context", default=None, help="JSON object passed as initial context")
    run.add_argument("--queue", action="store_true", help="Run through the job queue")
    run.add_argument("--json", action="store_true", help="Print the result as JSON")

    status = sub.add_parser("status", help="Show a persisted session and its turns")
    status.add_argument("session_id")

    replay = sub.add_parser("replay", help="Re-run a persisted session under a new id")
    replay.add_argument("session_id")
    replay.add_argument("--message", default=None)

    cleanup = sub.add_parser("cleanup", help="Fail stale running sessions")
    cleanup.add_argument("--timeout", type=int, default=60, help="Minutes before a running session is stale")
    cleanup.add_argument("--prune", action="store_true", help="Also delete sessions past the retention window")

    return parser


def _print_table(headers: list[str], rows: list[list[object]], *, title: str | None = None) -> None:
    table = Table(title=title)
    for index, header in enumerate(headers):
        table.add_column(header, style="cyan" if index == 0 else None)
    for row in rows:
        # Text keeps brackets in values from being read as console markup.
        table.add_row(*(Text("" if value is None else str(value)) for value in row))
    Console().print(table)


def _print_result(result: SessionResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return
    _print_table(
        ["Property", "Value"],
        [
            ["ID", result.id],
            ["Status", result.status.value],
            ["Turns", result.total_turns],
            ["Input Tokens", f"{result.total_input_tokens:,}"],
            ["Output Tokens", f"{result.total_output_tokens:,}"],
            ["Cost (USD)", f"${result.estimated_cost_usd:.4f}"],
            ["Error", result.error],
        ],
        title="Session result",
    )
    if result.final_message:
        print()
        print(result.final_message)


async def _run(runtime: AppRuntime, args: argparse.Namespace) -> int:
    context = json.loads(args.context) if args.context else None
    session = Session(
        args.name,
        services=runtime.services,
        system_prompt=args.system_prompt,
        tools=args.tools,
        context=context,
        middleware=args.middleware,
    ).configure(model=args.model, max_turns=args.max_turns)

    if args.queue:
        runtime.job_queue.enqueue({"session": session.to_serializable(), "message": args.message})
        await runtime.job_queue.join()
        result = runtime.job_queue.results.get(session.id)
        if result is None:
            logger.error(f"Session {session.id} failed: {runtime.job_queue.failures.get(session.id)}")
            return 1
    else:
        result = await session.start(args.message)

    _print_result(result, args.json)
    return 0 if result.is_completed else 1


def _status(runtime: AppRuntime, args: argparse.Namespace) -> int:
    repository = runtime.services.repository
    record = repository.get_session(args.session_id) if repository else None
    if record is None:
        logger.error(f"Session not found: {args.session_id}")
        return 1

    _print_table(
        ["Property", "Value"],
        [
            ["ID", record.id],
            ["Name", record.name],
            ["Status", record.status],
            ["Model", record.model],
            ["Turns", record.total_turns],
            ["Input Tokens", f"{record.total_input_tokens:,}"],
            ["Output Tokens", f"{record.total_output_tokens:,}"],
            ["Cost (USD)", f"${record.estimated_cost_usd:.4f}"],
            ["Started", record.started_at],
            ["Completed", record.completed_at],
            ["Error", record.error],
        ],
        title=f"Session {record.id}",
    )

    turns = repository.list_turns(record.id)
    if turns:
        print()
        _print_table(
            ["#", "Type", "Stop Reason", "Input Tokens", "Output Tokens", "Duration"],
            [
                [
                    t.turn_number,
                    t.type,
                    t.stop_reason or "-",
                    t.input_tokens or "-",
                    t.output_tokens or "-",
                    f"{t.duration_ms}ms" if t.duration_ms is not None else "-",
                ]
                for t in turns
            ],
            title="Turns",
        )
    return 0


async def _replay(runtime: AppRuntime, args: argparse.Namespace) -> int:
    repository = runtime.services.repository
    record = repository.get_session(args.session_id) if repository else None
    if record is None:
        logger.error(f"Session not found: {args.session_id}")
        return 1

    blueprint = record.blueprint
    if blueprint is None:
        logger.error(f"Session {record.id} has no stored blueprint and cannot be replayed")
        return 1
    message = args.message or record.initial_message
    if not message:
        logger.error(f"Session {record.id} has no initial message; pass --message")
        return 1

    data = {k: v for k, v in blueprint.items() if k != "id"}
    data["name"] = f"{record.name} (replay)"
    session = Session.from_serializable(data, runtime.services)
    print(f"Replaying {record.id} as {session.id}")
    result = await session.start(message)
    _print_result(result, as_json=False)
    return 0 if result.is_completed else 1


def _cleanup(runtime: AppRuntime, args: argparse.Namespace, prune_after_days: int) -> int:
    if runtime.store is None:
        logger.error("Session persistence is disabled; nothing to clean up")
        return 1
    failed = fail_stale_sessions(runtime.store, timeout_minutes=args.timeout)
    print(f"Marked {failed} stale session(s) as failed.")
    if args.prune:
        pruned = prune_sessions(runtime.store, older_than_days=prune_after_days)
        print(f"Pruned {pruned} session(s) older than {prune_after_days} days.")
    return 0


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)

    app = parse_app_config(load_json_config(args.config))
    env = resolve_runtime_env(app.provider_name)
    if args.command in ("run", "replay") and not env.provider_api_key:
        print(f"{env.provider_env_var} environment variable is required.", file=sys.stderr)
        return 1

    runtime = await bootstrap_runtime(app, env)
    if runtime.log_descriptions:
        logger.debug(f"Logging: {', '.join(runtime.log_descriptions)}")
    try:
        if args.command == "run":
            return await _run(runtime, args)
        if args.command == "status":
            return _status(runtime, args)
        if args.command == "replay":
            return await _replay(runtime, args)
        return _cleanup(runtime, args, app.prune_after_days)
    except RelayLoopError as ex:
        logger.error(f"{type(ex).__name__}: {ex}")
        return 1
    finally:
        await runtime.close()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
