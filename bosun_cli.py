#!/usr/bin/env python3
"""Bosun CLI — run analyses from a terminal.

Usage:
    bosun ask "How did battery voltage behave overnight?"   Database access mode,
                                                            then follow-up prompt
    bosun analyze navigation.speedOverGround --type trend   Sampling mode
    bosun history [--limit 10]                              Recent analyses
    bosun test                                              Check the reasoning agent
    bosun serve [--port 8000]                               API server (uvicorn)
    bosun --help                                            Show help
"""

import argparse
import asyncio
import sys
from datetime import datetime, timedelta, timezone

# ---- ANSI colors ----

_USE_COLOR = sys.stdout.isatty()


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def dim(text: str) -> str:
    return _c("2", text)


def cyan(text: str) -> str:
    return _c("36", text)


def red(text: str) -> str:
    return _c("31", text)


def bold(text: str) -> str:
    return _c("1", text)


# ---- Helpers ----

def _parse_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _time_range(args):
    if args.start or args.end:
        if not (args.start and args.end):
            raise SystemExit(red("--start and --end must be given together"))
        return (_parse_time(args.start), _parse_time(args.end))
    if args.hours:
        end = datetime.now(timezone.utc)
        return (end - timedelta(hours=args.hours), end)
    return None


def _print_result(result) -> None:
    print()
    print(result.analysis)
    if result.insights and result.metadata.get("mode") == "sampling":
        print()
        print(bold("Insights:"))
        for item in result.insights:
            print(f"  - {item}")
    if result.recommendations:
        print()
        print(bold("Recommendations:"))
        for item in result.recommendations:
            print(f"  - {item}")
    if result.anomalies:
        print()
        print(bold(f"Anomalies ({len(result.anomalies)}):"))
        for a in result.anomalies:
            print(f"  [{a.get('severity', '?')}] {a.get('timestamp', '')} {a.get('description', '')}")
    usage = result.usage or {}
    print()
    print(dim(
        f"  [{result.id} | confidence {result.confidence:.2f} | "
        f"in: {usage.get('input_tokens', 0):,} out: {usage.get('output_tokens', 0):,} | "
        f"queries: {result.metadata.get('queries_executed', 0)}]"
    ))


def _orchestrator(args):
    from agent.core import create_orchestrator

    try:
        return create_orchestrator(verbose=args.verbose, log_to_file=True)
    except ValueError as e:
        raise SystemExit(red(str(e)))


# ---- Commands ----

async def _ask(args) -> None:
    from agent.core import AnalysisRequest
    from agent.errors import AnalysisError

    orch = _orchestrator(args)
    request = AnalysisRequest(
        data_path=args.path or "",
        analysis_type="custom",
        time_range=_time_range(args),
        custom_prompt=args.question,
        use_database_access=True,
    )
    try:
        result = await orch.analyze(request)
    except AnalysisError as e:
        print(red(f"\n  Error: {e}"))
        return
    _print_result(result)

    if args.no_follow_up:
        return
    print(dim("\n  Ask a follow-up, or press Enter to quit."))
    while True:
        try:
            question = input(cyan("\n> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not question or question in ("/quit", "/exit"):
            break
        try:
            _print_result(await orch.resume(result.id, question))
        except AnalysisError as e:
            print(red(f"\n  Error: {e}"))
    orch.dispatcher.engine.close()


async def _analyze(args) -> None:
    from agent.core import AnalysisRequest
    from agent.errors import AnalysisError

    orch = _orchestrator(args)
    request = AnalysisRequest(
        data_path=args.path,
        analysis_type=args.type,
        time_range=_time_range(args),
        custom_prompt=args.prompt,
        aggregation_method=args.aggregation,
        resolution=args.resolution,
    )
    try:
        result = await orch.analyze(request)
    except AnalysisError as e:
        print(red(f"\n  Error: {e}"))
        return
    _print_result(result)


async def _test(args) -> None:
    orch = _orchestrator(args)
    result = await orch.test_connection()
    if result["success"]:
        print("  Connection successful.")
    else:
        print(red(f"  Connection failed: {result.get('error')}"))


def cmd_history(args) -> None:
    from data_ops.analysis_store import AnalysisStore

    entries = AnalysisStore().list_recent(args.limit)
    if not entries:
        print("  No analyses saved yet.")
        return
    for entry in entries:
        meta = entry.get("metadata") or {}
        preview = (entry.get("analysis") or "").strip().splitlines()
        print(f"  {entry.get('id')}  {dim(entry.get('timestamp', ''))}  "
              f"{meta.get('mode', '?')}/{meta.get('analysis_type', '?')}")
        if preview:
            print(dim(f"      {preview[0][:100]}"))


def cmd_serve(args) -> None:
    import uvicorn

    uvicorn.run("api_server:app", host=args.host, port=args.port)


def _add_time_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--start", help="Window start (ISO 8601)")
    p.add_argument("--end", help="Window end (ISO 8601)")
    p.add_argument("--hours", type=float, help="Window of the last N hours")


def main():
    parser = argparse.ArgumentParser(
        prog="bosun",
        description="Bosun — tool-using analysis agent for recorded vessel data",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Show debug logging (tool calls, retries)",
    )
    subparsers = parser.add_subparsers(dest="subcommand")

    # bosun ask
    ask_parser = subparsers.add_parser("ask", help="Database access analysis with follow-ups")
    ask_parser.add_argument("question")
    ask_parser.add_argument("--path", help="Primary data path of interest")
    ask_parser.add_argument("--no-follow-up", action="store_true", help="Exit after the first answer")
    _add_time_args(ask_parser)

    # bosun analyze
    analyze_parser = subparsers.add_parser("analyze", help="Sampling mode analysis of one data path")
    analyze_parser.add_argument("path", help="Data path(s), comma-separated")
    analyze_parser.add_argument(
        "--type", default="summary",
        choices=["summary", "anomaly", "trend", "correlation", "custom"],
    )
    analyze_parser.add_argument("--prompt", help="Custom instructions")
    analyze_parser.add_argument("--aggregation", help="History aggregation (e.g. max, sma)")
    analyze_parser.add_argument("--resolution", help="History resolution in milliseconds")
    _add_time_args(analyze_parser)

    # bosun history
    history_parser = subparsers.add_parser("history", help="List recent analyses")
    history_parser.add_argument("--limit", type=int, default=20)

    # bosun test
    subparsers.add_parser("test", help="Check the reasoning agent connection")

    # bosun serve
    serve_parser = subparsers.add_parser("serve", help="API server (uvicorn)")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--host", type=str, default="0.0.0.0")

    args = parser.parse_args()

    if args.subcommand == "ask":
        asyncio.run(_ask(args))
    elif args.subcommand == "analyze":
        asyncio.run(_analyze(args))
    elif args.subcommand == "history":
        cmd_history(args)
    elif args.subcommand == "test":
        asyncio.run(_test(args))
    elif args.subcommand == "serve":
        cmd_serve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
