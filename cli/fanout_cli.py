"""Webhook fan-out CLI - endpoint management, logs and replay."""

import json

import click
import httpx

from fanout.auth import generate_api_token

DEFAULT_BASE_URL = "http://localhost:8000"


def api_request(ctx: click.Context, method: str, path: str, **kwargs):
    headers = {}
    if ctx.obj.get("token"):
        headers["Authorization"] = f"Bearer {ctx.obj['token']}"
    r = httpx.request(method, f"{ctx.obj['base_url']}{path}", headers=headers, **kwargs)
    if r.is_error:
        try:
            detail = r.json().get("detail", r.text)
        except ValueError:
            detail = r.text
        raise click.ClickException(f"{method} {path} failed ({r.status_code}): {detail}")
    return r.json()


def _parse_headers(pairs: tuple[str, ...]) -> dict[str, str]:
    headers = {}
    for pair in pairs:
        name, sep, value = pair.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME:VALUE, got {pair!r}", param_hint="--header")
        headers[name.strip()] = value.strip()
    return headers


@click.group()
@click.option("--base-url", envvar="FANOUT_API_URL", default=DEFAULT_BASE_URL, show_default=True)
@click.option("--token", envvar="FANOUT_API_TOKEN", default=None, help="Management API bearer token")
@click.pass_context
def cli(ctx: click.Context, base_url: str, token: str | None):
    """Webhook fan-out service CLI"""
    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url.rstrip("/")
    ctx.obj["token"] = token


# --- Endpoint commands ---


@cli.group()
def endpoints():
    """Manage destination endpoints."""
    pass


@endpoints.command("list")
@click.pass_context
def endpoints_list(ctx: click.Context):
    """List configured endpoints."""
    items = api_request(ctx, "GET", "/config/endpoints")["endpoints"]
    if not items:
        click.echo("No endpoints configured.")
        return
    for e in items:
        flags = []
        if e["is_primary"]:
            flags.append("primary")
        if not e["is_active"]:
            flags.append("inactive")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        click.echo(f"  #{e['id']}  {e['url']}{suffix}")


@endpoints.command("add")
@click.argument("url")
@click.option("--primary", is_flag=True, help="Make this the primary endpoint")
@click.option("--header", "header_pairs", multiple=True, help="Custom header NAME:VALUE (repeatable)")
@click.pass_context
def endpoints_add(ctx: click.Context, url: str, primary: bool, header_pairs: tuple[str, ...]):
    """Register a new endpoint."""
    result = api_request(ctx, "POST", "/config/endpoints", json={
        "url": url,
        "is_primary": primary,
        "headers": _parse_headers(header_pairs),
    })
    click.echo(f"Endpoint registered: ID={result['endpoint']['id']}")


@endpoints.command("update")
@click.argument("endpoint_id", type=int)
@click.option("--url", default=None)
@click.option("--primary/--no-primary", default=None)
@click.option("--active/--inactive", default=None)
@click.option("--header", "header_pairs", multiple=True, help="Replace custom headers NAME:VALUE")
@click.pass_context
def endpoints_update(ctx, endpoint_id, url, primary, active, header_pairs):
    """Update selected fields of an endpoint."""
    changes = {}
    if url is not None:
        changes["url"] = url
    if primary is not None:
        changes["is_primary"] = primary
    if active is not None:
        changes["is_active"] = active
    if header_pairs:
        changes["headers"] = _parse_headers(header_pairs)
    if not changes:
        raise click.UsageError("Nothing to update")

    result = api_request(ctx, "PATCH", f"/config/endpoints/{endpoint_id}", json=changes)
    click.echo(json.dumps(result["endpoint"], indent=2))


@endpoints.command("remove")
@click.argument("endpoint_id", type=int)
@click.pass_context
def endpoints_remove(ctx: click.Context, endpoint_id: int):
    """Delete an endpoint."""
    api_request(ctx, "DELETE", f"/config/endpoints/{endpoint_id}")
    click.echo(f"Endpoint #{endpoint_id} deleted")


# --- Log commands ---


@cli.group(invoke_without_command=True)
@click.option("--limit", type=int, default=50, show_default=True)
@click.option("--webhook-id", default=None)
@click.option("--endpoint", default=None, help="Filter by endpoint URL")
@click.pass_context
def logs(ctx: click.Context, limit: int, webhook_id: str | None, endpoint: str | None):
    """Show delivery log entries (newest first)."""
    if ctx.invoked_subcommand is not None:
        return
    params = {"limit": limit}
    if webhook_id:
        params["webhookId"] = webhook_id
    if endpoint:
        params["endpoint"] = endpoint
    for entry in api_request(ctx, "GET", "/logs", params=params)["logs"]:
        target = entry["endpoint_url"] or "-"
        click.echo(
            f"  {entry['created_at']}  {entry['direction']:<8}  {entry['method']:<6}  "
            f"status={entry['status_code']}  {target}  webhook={entry['webhook_id']}"
        )


@logs.command("clear")
@click.confirmation_option(prompt="Delete every delivery log entry?")
@click.pass_context
def logs_clear(ctx: click.Context):
    """Clear the delivery log."""
    result = api_request(ctx, "DELETE", "/logs")
    click.echo(f"Deleted {result['deleted']} log entries")


# --- Inbound webhook commands ---


@cli.group()
def webhooks():
    """Inspect received webhooks."""
    pass


@webhooks.command("list")
@click.option("--limit", type=int, default=50, show_default=True)
@click.option("--status", type=click.Choice(["pending", "completed", "failed"]), default=None)
@click.pass_context
def webhooks_list(ctx: click.Context, limit: int, status: str | None):
    """List received webhooks."""
    params = {"limit": limit}
    if status:
        params["status"] = status
    for w in api_request(ctx, "GET", "/webhooks", params=params)["webhooks"]:
        replay = f"  replay_of={w['replay_of']}" if w.get("replay_of") else ""
        click.echo(f"  {w['id']}  {w['created_at']}  {w['method']:<6}  {w['processing_status']}{replay}")


# --- Replay commands ---


@cli.group()
def replay():
    """Replay stored webhooks."""
    pass


@replay.command("one")
@click.argument("webhook_id")
@click.option("--endpoint-id", type=int, default=None, help="Replay to this endpoint only")
@click.pass_context
def replay_one(ctx: click.Context, webhook_id: str, endpoint_id: int | None):
    """Replay a single webhook."""
    payload = {"endpointId": endpoint_id} if endpoint_id is not None else None
    result = api_request(ctx, "POST", f"/replay/{webhook_id}", json=payload)["result"]
    click.echo(f"Replayed {webhook_id} as {result['new_webhook_id']}: {result['status']}")


@replay.command("range")
@click.option("--start", required=True, help="ISO-8601 start (inclusive)")
@click.option("--end", required=True, help="ISO-8601 end (inclusive)")
@click.option("--endpoint-id", type=int, default=None, help="Replay to this endpoint only")
@click.pass_context
def replay_range(ctx: click.Context, start: str, end: str, endpoint_id: int | None):
    """Replay every webhook received in a time window."""
    payload = {"startDate": start, "endDate": end}
    if endpoint_id is not None:
        payload["endpointId"] = endpoint_id
    result = api_request(ctx, "POST", "/replay", json=payload)
    click.echo(result["message"])
    for r in result["results"]:
        detail = f" ({r['error']})" if r.get("error") else ""
        click.echo(f"  {r['original_webhook_id']} -> {r['new_webhook_id'] or '-'}  {r['status']}{detail}")


# --- Tokens ---


@cli.command("generate-token")
def generate_token():
    """Print a new random token for MANAGEMENT_API_TOKENS."""
    click.echo(generate_api_token())


if __name__ == "__main__":
    cli()
