"""Console entry point for retrace."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from playwright.async_api import async_playwright

from retrace.src.errors import PersistenceError
from retrace.src.recorder.session import RecordingSession
from retrace.src.replay.coordinator import ExecutionCoordinator
from retrace.src.replay.engine import ActionExecutionEngine
from retrace.src.replay.environment import PlaywrightEnvironment
from retrace.src.replay.uploader import WorkflowUploader, trace_filename
from retrace.src.utils.config import CONFIG


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="retrace", description="Record and guided-replay browser workflows")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the orchestration server")
    serve.add_argument("--host", default=CONFIG.server.host)
    serve.add_argument("--port", type=int, default=CONFIG.server.port)
    serve.add_argument("--mock", action="store_true", help="Use the mock decision engine")

    record = subparsers.add_parser("record", help="Record a demonstration in a browser window")
    record.add_argument("--url", required=True, help="Page to open before recording")
    record.add_argument("--name", default=None, help="Workflow name")
    record.add_argument("--output", default=None, help="Also write the trace to this JSONL file")
    record.add_argument("--no-upload", action="store_true", help="Do not upload to the server")

    replay = subparsers.add_parser("replay", help="Guided replay of a stored workflow")
    replay.add_argument("--workflow-id", required=True)
    replay.add_argument("--url", required=True, help="Page to open before replaying")
    replay.add_argument("--prompt", default=None, help="Extra instructions for the decision engine")
    replay.add_argument("--headless", action="store_true")

    subparsers.add_parser("list", help="List stored workflows")
    return parser


def run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from retrace.src.server.app import create_app
    from retrace.src.server.decision import MockDecisionEngine

    engine = MockDecisionEngine(delay_ms=1000) if args.mock else None
    app = create_app(CONFIG.server, decision_engine=engine)
    print(f"Server is running on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


async def _record(args: argparse.Namespace) -> int:
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=False)
        try:
            page = await browser.new_page()
            await page.goto(args.url, wait_until="domcontentloaded")
            session = RecordingSession(page, CONFIG.recorder)
            await session.start()
            print("Recording... press Enter to stop.")
            await asyncio.to_thread(sys.stdin.readline)
            _, trace = await session.stop()
        finally:
            await browser.close()

    if trace is None or not trace.events:
        print("No events to save.")
        return 1
    print(f"Captured {len(trace)} events and {len(trace.previews)} previews")

    if args.output:
        Path(args.output).write_text(trace.to_jsonl(), encoding="utf-8")
        print(f"Saved trace to {args.output}")
    if args.no_upload:
        return 0

    try:
        result = await asyncio.to_thread(WorkflowUploader().upload, trace, args.name)
    except PersistenceError as exc:
        print(f"Upload failed: {exc}", file=sys.stderr)
        return 1
    print(f"Uploaded {trace_filename(args.name)} as workflow {result.get('workflowId')}")
    return 0


async def _replay(args: argparse.Namespace) -> int:
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=args.headless)
        try:
            page = await browser.new_page()
            await page.goto(args.url, wait_until="domcontentloaded")
            replay_config = CONFIG.replay
            engine = ActionExecutionEngine(
                PlaywrightEnvironment(page),
                locate_timeout_ms=replay_config.locate_timeout_ms,
                poll_interval_ms=replay_config.poll_interval_ms,
                scroll_settle_ms=replay_config.scroll_settle_ms,
            )
            coordinator = ExecutionCoordinator(
                engine,
                max_retries=replay_config.max_retries,
                retry_backoff_ms=replay_config.retry_backoff_ms,
                step_settle_ms=replay_config.step_settle_ms,
                snapshot_quality=replay_config.snapshot_quality,
                on_log=print,
            )
            report = await coordinator.run(replay_config.websocket_url, args.workflow_id, args.prompt)
        finally:
            await browser.close()

    print(f"Replay {report.status.value}: {len(report.steps)} step(s)")
    if report.error:
        print(f"Error: {report.error}", file=sys.stderr)
    return 0 if report.succeeded else 1


def run_list(_args: argparse.Namespace) -> int:
    try:
        workflows = WorkflowUploader().list_workflows()
    except PersistenceError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if not workflows:
        print("No workflows stored.")
    for workflow in workflows:
        print(f"{workflow.get('id')}  {', '.join(workflow.get('files', []))}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(sys.argv[1:] if argv is None else argv))
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "serve":
            return run_serve(args)
        if args.command == "record":
            return asyncio.run(_record(args))
        if args.command == "replay":
            return asyncio.run(_replay(args))
        if args.command == "list":
            return run_list(args)
        parser.print_help()
        return 2
    except KeyboardInterrupt:
        print("\nStopped.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
