from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from pydantic import SecretStr
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from bench_dispatch.concurrency import dedup_key
from bench_dispatch.core import (
    DispatchError,
    Settings,
    bind,
    clear_bindings,
    configure_logging,
    get_logger,
    load_settings,
    stable_json_dumps,
)
from bench_dispatch.models import ChangeEvent, EventKind
from bench_dispatch.service import EXIT_CODES, Dispatcher, Outcome, RunOutcome
from bench_dispatch.sources import (
    event_from_actions_env,
    iter_events_jsonl,
    read_event_json,
)
from bench_dispatch.trigger import admit
from bench_dispatch.workflow import WorkflowConfig, load_workflow

console = Console()

_OUTCOME_STYLE: dict[Outcome, str] = {
    Outcome.succeeded: "green",
    Outcome.not_admitted: "dim",
    Outcome.cancelled: "yellow",
}


@dataclass(frozen=True, slots=True)
class _CommonArgs:
    cmd: str
    config: Path | None
    workspace: Path | None
    run_root: Path | None


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help=(
            "Workflow definition (JSON). If omitted: uses BENCH_DISPATCH_CONFIG_PATH "
            "or ./config/workflow.json."
        ),
    )
    p.add_argument("--workspace", type=Path, default=None, help="Checkout to build in")
    p.add_argument("--run-root", type=Path, default=None, help="Where run reports go")


def _add_event_args(p: argparse.ArgumentParser) -> None:
    src = p.add_mutually_exclusive_group()
    src.add_argument("--event-file", type=Path, help="Change event as JSON")
    src.add_argument(
        "--github",
        action="store_true",
        help="Read the event from the GitHub Actions environment",
    )
    p.add_argument(
        "--git-diff",
        action="store_true",
        help="With --github: diff pushes too (pull requests are always diffed)",
    )
    p.add_argument("--kind", choices=[k.value for k in EventKind], default=None)
    p.add_argument("--ref", default=None)
    p.add_argument("--sha", default=None)
    p.add_argument("--pr", type=int, default=None, help="Pull request number")
    p.add_argument(
        "--path",
        action="append",
        dest="paths",
        default=None,
        help="Changed path (repeatable)",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="bench-dispatch")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("check", help="Evaluate admission for one event")
    _add_common_args(sp)
    _add_event_args(sp)

    sp = sub.add_parser("run", help="Handle one event end to end")
    _add_common_args(sp)
    _add_event_args(sp)

    sp = sub.add_parser("batch", help="Handle a JSONL file of events")
    _add_common_args(sp)
    sp.add_argument("events", type=Path, help="JSONL file, one change event per line")
    sp.add_argument("--max-parallel", type=int, default=None)

    sp = sub.add_parser("show-config", help="Print the effective workflow definition")
    _add_common_args(sp)

    return p


def _common(args: argparse.Namespace) -> _CommonArgs:
    return _CommonArgs(
        cmd=str(args.cmd),
        config=args.config,
        workspace=args.workspace,
        run_root=args.run_root,
    )


def _event_from_args(args: argparse.Namespace, workspace: Path) -> ChangeEvent | None:
    if args.event_file:
        return read_event_json(args.event_file)
    if args.github:
        return event_from_actions_env(
            workspace=workspace, use_git_diff=True if args.git_diff else None
        )

    if not args.kind or not args.ref or not args.sha:
        raise DispatchError("--kind, --ref and --sha are required without --event-file/--github")
    return ChangeEvent(
        kind=EventKind(args.kind),
        ref=args.ref,
        commit_sha=args.sha,
        changed_paths=frozenset(args.paths or ()),
        pr_number=args.pr,
    )


def _credentials(settings: Settings, workflow: WorkflowConfig) -> SecretStr | None:
    if settings.token is not None:
        return settings.token
    raw = os.environ.get(workflow.runner.token_env)
    return SecretStr(raw) if raw else None


def _outcome_table(outcomes: Sequence[RunOutcome]) -> Table:
    tbl = Table(title="Result", show_header=True, box=None)
    for col in ("dedup key", "outcome", "state", "exit", "report"):
        tbl.add_column(col)
    for o in outcomes:
        style = _OUTCOME_STYLE.get(o.outcome, "red")
        tbl.add_row(
            o.dedup_key,
            f"[{style}]{o.outcome.value}[/{style}]",
            o.state.value if o.state else "-",
            str(o.exit_code),
            str(o.report_path) if o.report_path else "-",
        )
    return tbl


def _batch_exit_code(outcomes: Sequence[RunOutcome]) -> int:
    """First error outcome wins; a batch of successes, skips and supersessions exits 0."""
    for o in outcomes:
        if o.outcome not in (Outcome.succeeded, Outcome.not_admitted, Outcome.cancelled):
            return o.exit_code
    return 0


def _cmd_check(args: argparse.Namespace, workflow: WorkflowConfig, workspace: Path) -> int:
    event = _event_from_args(args, workspace)
    if event is None:
        console.print("[dim]event does not map to a trigger kind[/dim]")
        return EXIT_CODES[Outcome.not_admitted]

    ok = admit(event, workflow.trigger)
    tbl = Table(title="Admission", show_header=False, box=None)
    tbl.add_row("kind", event.kind.value)
    tbl.add_row("ref", event.ref)
    tbl.add_row("dedup key", dedup_key(workflow, event))
    tbl.add_row("admitted", "[green]yes[/green]" if ok else "[dim]no[/dim]")
    console.print(tbl)
    return 0


def _cmd_run(
    args: argparse.Namespace, dispatcher: Dispatcher, workspace: Path
) -> int:
    event = _event_from_args(args, workspace)
    if event is None:
        console.print("[dim]event does not map to a trigger kind; nothing to do[/dim]")
        return EXIT_CODES[Outcome.not_admitted]

    with console.status("[bold]dispatching[/]", spinner="dots"):
        outcome = dispatcher.handle(event, meta={"command": "run"})
    console.print(_outcome_table([outcome]))
    if outcome.detail:
        console.print(Text(outcome.detail, style="red" if outcome.exit_code else "dim"))
    return outcome.exit_code


def _cmd_batch(
    args: argparse.Namespace, dispatcher: Dispatcher, settings: Settings
) -> int:
    events = list(iter_events_jsonl(args.events))
    max_parallel = args.max_parallel or settings.max_parallel
    with console.status(f"[bold]dispatching {len(events)} event(s)[/]", spinner="dots"):
        outcomes = dispatcher.handle_batch(
            events, max_parallel=max_parallel, meta={"command": "batch"}
        )
    console.print(_outcome_table(outcomes))
    return _batch_exit_code(outcomes)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    common = _common(args)

    s = load_settings()
    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("bench_dispatch")

    try:
        workflow = load_workflow(common.config or s.config_path)
    except DispatchError as e:
        log.error("Invalid workflow definition", error=str(e))
        console.print(f"[red]{e}[/red]")
        return EXIT_CODES[Outcome.internal_error]

    workspace = (common.workspace or s.workspace).resolve()
    run_root = common.run_root or s.run_root
    if not run_root.is_absolute():
        run_root = workspace / run_root

    clear_bindings()
    bind(command=common.cmd, workflow=workflow.identity)

    if common.cmd == "show-config":
        console.print_json(stable_json_dumps(workflow.model_dump(mode="json")))
        return 0

    console.print(
        Panel.fit(
            Text(
                f"bench-dispatch - {common.cmd}\nworkflow={workflow.name}\nworkspace={workspace}",
                style="bold",
            ),
            title="Dispatch",
        )
    )

    try:
        if common.cmd == "check":
            return _cmd_check(args, workflow, workspace)

        dispatcher = Dispatcher(
            workflow=workflow,
            workspace=workspace,
            run_root=run_root,
            credentials=_credentials(s, workflow),
            logger=log,
        )
        if common.cmd == "run":
            return _cmd_run(args, dispatcher, workspace)
        return _cmd_batch(args, dispatcher, s)
    except DispatchError as e:
        log.error("Dispatch failed", error=str(e))
        console.print(f"[red]{e}[/red]")
        return EXIT_CODES[Outcome.internal_error]


if __name__ == "__main__":
    raise SystemExit(main())
