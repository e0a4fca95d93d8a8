"""
Codelab Grader CLI - gradectl
Click-based tool for running test batteries locally and talking to the grading API.
"""

import asyncio
import json
import sys
from typing import Optional
from uuid import UUID, uuid4

import click
import requests

# ============================================
# CLI Configuration
# ============================================


class Context:
    """CLI context for global settings."""

    def __init__(self):
        self.api_url: str = "http://localhost:8000"
        self.token: Optional[str] = None
        self.output_format: str = "table"


pass_context = click.make_pass_decorator(Context, ensure=True)


def setup_api_client(ctx: Context) -> requests.Session:
    """Create API client with auth headers."""
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})
    if ctx.token:
        session.headers.update({"Authorization": f"Bearer {ctx.token}"})
    return session


def read_channel(path: Optional[str]) -> str:
    if not path:
        return ""
    with open(path, encoding="utf-8") as f:
        return f.read()


def echo_outcomes(outcomes: list, output_format: str) -> None:
    if output_format == "json":
        click.echo(json.dumps(outcomes, indent=2))
        return
    click.echo(f"{'#':<4} {'Test':<36} {'Result':<8} Message")
    click.echo("-" * 80)
    for outcome in outcomes:
        click.echo(
            f"{outcome['index']:<4} "
            f"{outcome['name'][:36]:<36} "
            f"{'PASS' if outcome['passed'] else 'FAIL':<8} "
            f"{outcome['message']}"
        )


def fail_request(e: requests.RequestException) -> None:
    detail = ""
    if getattr(e, "response", None) is not None:
        try:
            detail = e.response.json().get("detail", "")
        except ValueError:
            detail = e.response.text
    click.echo(f"Error: {e}{f' ({detail})' if detail else ''}", err=True)
    sys.exit(1)


# ============================================
# Base Commands
# ============================================

@click.group()
@click.option(
    "--api-url",
    default="http://localhost:8000",
    help="Grading API URL",
    envvar="GRADECTL_API_URL",
)
@click.option(
    "--token",
    help="Bearer token issued by the identity service",
    envvar="GRADECTL_TOKEN",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.option("-v", "--verbose", is_flag=True, help="Log sandbox activity to stderr")
@click.pass_context
def cli(ctx: click.Context, api_url: str, token: Optional[str], output: str, verbose: bool):
    """Codelab Grader CLI"""
    from app.core.logging import setup_logging

    setup_logging("DEBUG" if verbose else "WARNING", "console", stream=sys.stderr)
    ctx.ensure_object(Context)
    ctx.obj.api_url = api_url.rstrip("/")
    ctx.obj.token = token
    ctx.obj.output_format = output


# ============================================
# Local Execution
# ============================================

@cli.command("run")
@click.argument("battery_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--markup", "markup_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--style", "style_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--script", "script_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--budget-ms", type=int, help="Wall-clock budget override")
@pass_context
def run(
    ctx: Context,
    battery_file: str,
    markup_file: Optional[str],
    style_file: Optional[str],
    script_file: Optional[str],
    budget_ms: Optional[int],
):
    """Execute a test battery locally in the sandbox"""
    from app.application.grading.revalidation import grade
    from app.core.config import get_settings
    from app.domain.grading.entities import AttemptStatus, Submission, TestBattery
    from app.infrastructure.sandbox.executor import SandboxExecutor
    from app.infrastructure.sandbox.security import SandboxLimits

    with open(battery_file, encoding="utf-8") as f:
        document = json.load(f)
    document.setdefault("challenge_id", str(uuid4()))
    document.setdefault("content_version", "local")
    battery = TestBattery.from_dict(document)

    submission = Submission(
        user_id=uuid4(),
        challenge_id=battery.challenge_id,
        markup=read_channel(markup_file),
        style=read_channel(style_file),
        script=read_channel(script_file),
    )

    settings = get_settings()
    executor = SandboxExecutor(
        limits=SandboxLimits.from_settings(settings),
        python=settings.sandbox_python,
        max_concurrency=1,
        name="gradectl",
    )
    attempt = asyncio.run(grade(executor, submission, battery, budget_ms))

    if ctx.output_format == "json":
        click.echo(json.dumps(attempt.to_dict(), indent=2))
    else:
        for entry in attempt.runtime_logs:
            click.echo(f"[{entry.level}] {entry.text}")
        echo_outcomes([o.to_dict() for o in attempt.outcomes], "table")
        click.echo("-" * 80)
        click.echo(
            f"Status: {attempt.status.value}  Score: {attempt.score:.2f}  "
            f"Termination: {attempt.termination_reason.value}  "
            f"Time: {attempt.execution_time_ms}ms"
        )

    sys.exit(0 if attempt.status == AttemptStatus.PASS else 1)


# ============================================
# API Commands
# ============================================

@cli.command("submit")
@click.argument("challenge_id", type=click.UUID)
@click.option("--markup", "markup_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--style", "style_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--script", "script_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--content-version", help="Pin a battery version")
@pass_context
def submit(
    ctx: Context,
    challenge_id: UUID,
    markup_file: Optional[str],
    style_file: Optional[str],
    script_file: Optional[str],
    content_version: Optional[str],
):
    """Submit a solution to the grading API"""
    session = setup_api_client(ctx)
    data = {
        "challenge_id": str(challenge_id),
        "content_version": content_version,
        "markup": read_channel(markup_file),
        "style": read_channel(style_file),
        "script": read_channel(script_file),
    }

    try:
        response = session.post(f"{ctx.api_url}/api/v1/submissions", json=data)
        response.raise_for_status()
    except requests.RequestException as e:
        fail_request(e)
        return

    attempt = response.json()
    if ctx.output_format == "json":
        click.echo(json.dumps(attempt, indent=2))
    else:
        echo_outcomes(attempt["outcomes"], "table")
        click.echo("-" * 80)
        click.echo(f"Status: {attempt['status']}  Score: {attempt['score']:.2f}")


@cli.command("progress")
@click.argument("challenge_id", type=click.UUID)
@pass_context
def progress(ctx: Context, challenge_id: UUID):
    """Show progress on a challenge"""
    session = setup_api_client(ctx)
    try:
        response = session.get(f"{ctx.api_url}/api/v1/progress/{challenge_id}")
        response.raise_for_status()
    except requests.RequestException as e:
        fail_request(e)
        return

    record = response.json()
    if ctx.output_format == "json":
        click.echo(json.dumps(record, indent=2))
    else:
        click.echo(f"Status:         {record['status']}")
        click.echo(f"Best score:     {record['best_score']:.2f}")
        click.echo(f"Attempts:       {record['total_attempts']}")
        click.echo(f"Completed at:   {record.get('completed_at') or '-'}")
        click.echo(f"Last attempt:   {record.get('last_attempt_at') or '-'}")


@cli.command("history")
@click.option("--challenge-id", type=click.UUID, help="Filter by challenge")
@click.option("--limit", type=int, default=20)
@pass_context
def history(ctx: Context, challenge_id: Optional[UUID], limit: int):
    """List recent attempts"""
    session = setup_api_client(ctx)
    params = {"limit": limit}
    if challenge_id:
        params["challenge_id"] = str(challenge_id)

    try:
        response = session.get(f"{ctx.api_url}/api/v1/submissions/history", params=params)
        response.raise_for_status()
    except requests.RequestException as e:
        fail_request(e)
        return

    attempts = response.json()["attempts"]
    if ctx.output_format == "json":
        click.echo(json.dumps(attempts, indent=2))
        return
    click.echo(f"{'Attempt':<38} {'Status':<8} {'Score':>7}  Created")
    click.echo("-" * 80)
    for attempt in attempts:
        click.echo(
            f"{attempt['id']:<38} {attempt['status']:<8} "
            f"{attempt['score']:>7.2f}  {attempt['created_at']}"
        )


if __name__ == "__main__":
    cli()
