#!/usr/bin/env python3
"""Agent Webhook - run the coding-agent pipeline from a webhook or the command line.

Usage:
    python main.py serve                                         # HTTP server (PORT, default 3000)
    python main.py serve --port 8080
    python main.py run --instruction "add a LICENSE file" --repo-url https://example.test/repo.git
    python main.py run --instruction "..." --project demo --pr   # also open a pull request
    python main.py status                                        # collaborator diagnostics
"""

import argparse
import json
import sys

from config.defaults import DEFAULTS
from config.settings import load_settings
from core.diagnostics import collect_status
from core.git import validate_branch_name
from core.orchestrator import Orchestrator
from core.state import PipelineRequest


def _format_stage(stage):
    """One summary line per stage for CLI display."""
    if stage.skipped:
        marker = "SKIP"
    elif stage.success:
        marker = "OK"
    else:
        marker = "FAIL"
    line = f"  [{marker:4s}] {stage.stage}"
    if stage.reason:
        line += f" ({stage.reason})"
    if stage.error:
        line += f": {stage.error}"
    if stage.details.get("url"):
        line += f" -> {stage.details['url']}"
    return line


def cmd_run(args):
    """Run one pipeline locally."""
    settings = load_settings()
    request = PipelineRequest(
        instruction=args.instruction.strip(),
        repository_url=args.repo_url,
        project_name=args.project,
        base_branch=args.base,
        work_branch=args.branch,
        create_branch=not args.no_branch,
        create_pull_request=args.pr,
        pull_request_title=args.title,
        pull_request_description=args.description,
    )
    if not request.instruction:
        print("error: --instruction must not be empty", file=sys.stderr)
        return 2
    try:
        validate_branch_name(request.base_branch)
        validate_branch_name(request.work_branch)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    result = Orchestrator(settings).run(request)

    print(f"Working copy: {result.working_copy_path}")
    print(f"Branch:       {result.branch}")
    for stage in result.stages:
        print(_format_stage(stage))
        if args.verbose and stage.output:
            for out_line in stage.output.splitlines():
                print(f"           {out_line}")
    if result.aborted:
        print(f"\nAborted: {result.error}", file=sys.stderr)
    print(f"\nSuccess: {'yes' if result.success else 'no'}")
    return 0 if result.success else 1


def cmd_serve(args):
    import server
    server.serve(host=args.host, port=args.port)
    return 0


def cmd_status(args):
    settings = load_settings()
    report = collect_status(settings, Orchestrator(settings).agent.resolver)
    print(json.dumps(report, indent=2))
    return 0 if report["overall"]["agent_ready"] and report["overall"]["git_ready"] else 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="agent-webhook",
        description="Webhook-triggered coding agent pipeline",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Bind address (default: HOST or 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Listen port (default: PORT or 3000)")

    run_parser = subparsers.add_parser("run", help="Run one pipeline from the command line")
    run_parser.add_argument("--instruction", required=True, help="Natural language instruction")
    run_parser.add_argument("--repo-url", help="Repository to clone when the working copy is missing")
    run_parser.add_argument("--project", help="Project name (working copy directory)")
    run_parser.add_argument("--base", default=DEFAULTS["base_branch"],
                            help=f"Base branch (default: {DEFAULTS['base_branch']})")
    run_parser.add_argument("--branch", default=DEFAULTS["work_branch"],
                            help=f"Work branch (default: {DEFAULTS['work_branch']})")
    run_parser.add_argument("--no-branch", action="store_true",
                            help="Work on the checked-out branch instead of creating one")
    run_parser.add_argument("--pr", action="store_true", help="Open a pull request afterwards")
    run_parser.add_argument("--title", help="Pull request title")
    run_parser.add_argument("--description", help="Pull request body")
    run_parser.add_argument("--verbose", action="store_true", help="Print each stage's output")

    subparsers.add_parser("status", help="Show collaborator diagnostics")

    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "run":
        return cmd_run(args)
    if args.command == "status":
        return cmd_status(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
