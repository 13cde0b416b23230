"""Click CLI group: capability table and configuration checks."""

from __future__ import annotations

import json
import sys
from dataclasses import asdict, dataclass

import click

from omnichannel.channels.capabilities import get_capabilities
from omnichannel.models import ChannelType


@dataclass(frozen=True, slots=True)
class CheckResult:
    name: str
    passed: bool
    message: str
    fix_hint: str = ""


def check_config_loads() -> CheckResult:
    try:
        from omnichannel.config import Settings

        Settings()
        return CheckResult(name="Settings load without error", passed=True, message="ok")
    except Exception as exc:
        return CheckResult(
            name="Settings load without error",
            passed=False,
            message=str(exc),
            fix_hint="Check .env for typos or missing required fields.",
        )


def check_config_validates() -> CheckResult:
    try:
        from omnichannel.config import Settings, validate_settings_for_env

        settings = Settings()
        validate_settings_for_env(settings)
        return CheckResult(
            name="validate_settings_for_env() passes", passed=True, message="ok"
        )
    except Exception as exc:
        return CheckResult(
            name="validate_settings_for_env() passes",
            passed=False,
            message=str(exc),
            fix_hint="Fix the configuration issues listed above.",
        )


def _capability_row(channel_type: str) -> dict[str, object]:
    caps = get_capabilities(channel_type)
    return {"channelType": channel_type, **asdict(caps)}


@click.group()
def cli() -> None:
    """Omnichannel inbox CLI."""


@cli.command()
@click.argument("channel_type", required=False)
@click.option("--json", "json_output", is_flag=True, help="Print structured JSON output.")
def capabilities(channel_type: str | None, json_output: bool) -> None:
    """Show reply/delete capabilities for one channel type or all of them."""
    names = [channel_type] if channel_type else [c.value for c in ChannelType]
    rows = [_capability_row(name) for name in names]
    if json_output:
        click.echo(json.dumps(rows if not channel_type else rows[0], indent=2))
        return
    for row in rows:
        limit = row["delete_time_limit"]
        click.echo(
            f"{row['channelType']:<20} reply={'yes' if row['supports_reply'] else 'no':<4}"
            f"delete={'yes' if row['supports_delete'] else 'no':<4}"
            f"quoted={'yes' if row['supports_quoted_messages'] else 'no':<4}"
            f"format={row['reply_format']:<9}"
            f"limit={f'{limit}m' if limit is not None else '-'}"
        )


@cli.command("check-config")
def check_config() -> None:
    """Validate settings for the current APP_ENV."""
    failed = False
    for result in (check_config_loads(), check_config_validates()):
        mark = "ok" if result.passed else "FAIL"
        click.echo(f"[{mark}] {result.name}: {result.message}")
        if not result.passed:
            failed = True
            if result.fix_hint:
                click.echo(f"       hint: {result.fix_hint}")
    if failed:
        sys.exit(1)
