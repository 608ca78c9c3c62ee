"""Typer CLI entrypoint."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import typer

from rpcagent import __version__
from rpcagent.api import Client
from rpcagent.core.config_loader import load_local_config
from rpcagent.core.errors import RpcError
from rpcagent.core.info import render_json, render_text
from rpcagent.core.model import InfoFlags, LocalConfig, RunFlags
from rpcagent.core.rps import PROTOCOL_VERSION

app = typer.Typer(help="Intel AMT activation, configuration and inspection")
configure_app = typer.Typer(help="Configure an activated device through LMS")
app.add_typer(configure_app, name="configure")

LOGGER = logging.getLogger(__name__)
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        document = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            document["error"] = self.formatException(record.exc_info)
        return json.dumps(document)


def configure_logging(*, verbose: bool, log_level: str, json_output: bool) -> None:
    """Install one stderr handler on the package logger."""
    logger = logging.getLogger("rpcagent")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))
    logger.handlers[:] = [handler]

    if verbose:
        logger.setLevel(logging.DEBUG)
        return
    level = logging.getLevelName(log_level.upper())
    if isinstance(level, int):
        logger.setLevel(level)
    else:
        logger.setLevel(logging.INFO)
        LOGGER.warning("Invalid log level '%s', using info", log_level)


def _build_client() -> Client:
    return Client()


def _fail(exc: RpcError) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=exc.status) from None


def _json_output(ctx: typer.Context) -> bool:
    return bool(ctx.obj)


def _report_done(ctx: typer.Context, mode: str) -> None:
    if _json_output(ctx):
        typer.echo(json.dumps({"status": "success", "mode": mode}))
    else:
        typer.echo(f"Completed {mode}")


@app.callback()
def main(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output and JSON log lines"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at debug level"),
    log_level: str = typer.Option("info", "--log-level", envvar="RPCAGENT_LOG_LEVEL", help="Log level name"),
) -> None:
    configure_logging(verbose=verbose, log_level=log_level, json_output=json_output)
    ctx.obj = json_output


@app.command("amtinfo")
def amtinfo(
    ctx: typer.Context,
    ver: bool = typer.Option(False, "--ver", help="AMT version"),
    bld: bool = typer.Option(False, "--bld", help="Build number"),
    sku: bool = typer.Option(False, "--sku", help="Product SKU and decoded features"),
    uuid: bool = typer.Option(False, "--uuid", help="Device UUID"),
    mode: bool = typer.Option(False, "--mode", help="Control mode"),
    dns: bool = typer.Option(False, "--dns", help="DNS suffix"),
    hostname: bool = typer.Option(False, "--hostname", help="OS hostname"),
    ras: bool = typer.Option(False, "--ras", help="Remote access connection status"),
    lan: bool = typer.Option(False, "--lan", help="Wired and wireless LAN settings"),
    cert: bool = typer.Option(False, "--cert", help="Trusted root certificate hashes"),
    usercert: bool = typer.Option(False, "--usercert", help="Public key certificates stored in AMT"),
    all_fields: bool = typer.Option(False, "--all", help="Every field (default when none is selected)"),
    password: str | None = typer.Option(None, "--password", envvar="AMT_PASSWORD", help="AMT admin password"),
) -> None:
    """Show information about the AMT device."""
    info = InfoFlags(
        ver=ver,
        bld=bld,
        sku=sku,
        uuid=uuid,
        mode=mode,
        dns=dns,
        hostname=hostname,
        ras=ras,
        lan=lan,
        cert=cert,
        user_cert=usercert,
    )
    if all_fields or not info.any_selected():
        info.select_all()
    flags = RunFlags(command="amtinfo", password=password, json_output=_json_output(ctx), info=info)

    try:
        report = _build_client().amt_info(flags)
    except RpcError as exc:
        _fail(exc)
    typer.echo(render_json(report) if flags.json_output else render_text(report))


@app.command("activate")
def activate(
    ctx: typer.Context,
    local: bool = typer.Option(False, "--local", help="Activate through LMS without a server"),
    ccm: bool = typer.Option(False, "--ccm", help="Client control mode (local)"),
    acm: bool = typer.Option(False, "--acm", help="Admin control mode (local)"),
    lsa: bool = typer.Option(True, "--lsa/--no-lsa", help="Use the local system account for the LMS session"),
    password: str | None = typer.Option(None, "--password", envvar="AMT_PASSWORD", help="AMT admin password"),
    config: Path | None = typer.Option(None, "--config", help="Local configuration YAML"),
    url: str | None = typer.Option(None, "--url", envvar="RPS_URL", help="Provisioning server websocket URL"),
    profile: str | None = typer.Option(None, "--profile", envvar="RPS_PROFILE", help="Provisioning profile name"),
    skip_cert_check: bool = typer.Option(False, "--skip-cert-check", help="Do not verify the server certificate"),
) -> None:
    """Activate the device locally or through a provisioning server."""
    try:
        flags = RunFlags(
            command="activate",
            local=local,
            use_ccm=ccm,
            use_acm=acm,
            use_lsa=lsa,
            password=password,
            url=None if local else url,
            profile=profile,
            skip_cert_check=skip_cert_check,
            json_output=_json_output(ctx),
            config=load_local_config(config) if local else LocalConfig(),
        )
        selected = _build_client().run(flags)
    except RpcError as exc:
        _fail(exc)
    _report_done(ctx, selected.mode.value)


@app.command("deactivate")
def deactivate(
    ctx: typer.Context,
    url: str | None = typer.Option(None, "--url", envvar="RPS_URL", help="Provisioning server websocket URL"),
    password: str | None = typer.Option(None, "--password", envvar="AMT_PASSWORD", help="AMT admin password"),
    skip_cert_check: bool = typer.Option(False, "--skip-cert-check", help="Do not verify the server certificate"),
) -> None:
    """Deactivate the device through a provisioning server."""
    flags = RunFlags(
        command="deactivate",
        password=password,
        url=url,
        skip_cert_check=skip_cert_check,
        json_output=_json_output(ctx),
    )
    try:
        selected = _build_client().run(flags)
    except RpcError as exc:
        _fail(exc)
    _report_done(ctx, selected.mode.value)


@configure_app.command("wireless")
def configure_wireless(
    ctx: typer.Context,
    config: Path = typer.Option(..., "--config", help="Local configuration YAML with wireless profiles"),
    password: str | None = typer.Option(None, "--password", envvar="AMT_PASSWORD", help="AMT admin password"),
) -> None:
    """Add wireless profiles, with optional 802.1x settings, to the device."""
    try:
        flags = RunFlags(
            command="configure",
            local=True,
            password=password,
            json_output=_json_output(ctx),
            config=load_local_config(config),
        )
        selected = _build_client().run(flags)
    except RpcError as exc:
        _fail(exc)
    _report_done(ctx, selected.mode.value)


@app.command("version")
def version(ctx: typer.Context) -> None:
    """Print the agent and protocol versions."""
    if _json_output(ctx):
        typer.echo(json.dumps({"app": "rpcagent", "version": __version__, "protocol": PROTOCOL_VERSION}))
    else:
        typer.echo(f"rpcagent {__version__} (protocol {PROTOCOL_VERSION})")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
