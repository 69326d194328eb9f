"""
Command-line interface for chainsource.

Runs single backend operations through the same dispatcher the Lightning
plugin uses and prints the wire-format answer as JSON. Handy to check a
configuration before handing it to the node.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

import typer
from loguru import logger
from pydantic import ValidationError

from chaincore.errors import ChainSourceError
from chaincore.protocol import (
    BlockByHeightRequest,
    GetChainInfoRequest,
    GetUtxoRequest,
    SendRawTransactionRequest,
)
from chainsource.config import Settings, settings_from_options
from chainsource.dispatcher import BackendDispatcher
from chainsource.factory import create_dispatcher

app = typer.Typer(
    name="chainsource",
    help="chainsource - Bitcoin chain data for Lightning nodes",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


@app.callback()
def configure(
    ctx: typer.Context,
    network: Annotated[
        str | None, typer.Option("--network", "-n", help="bitcoin | testnet | signet | regtest")
    ] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", "-c", help="Primary backend: bitcoind | esplora | neutrino"),
    ] = None,
    fallback_client: Annotated[
        str | None, typer.Option("--fallback-client", help="Backend tried when the primary fails")
    ] = None,
    esplora_url: Annotated[str | None, typer.Option("--esplora-url")] = None,
    rpc_host: Annotated[str | None, typer.Option("--rpc-host")] = None,
    rpc_port: Annotated[int | None, typer.Option("--rpc-port")] = None,
    rpc_user: Annotated[str | None, typer.Option("--rpc-user", envvar="BITCOIN_RPC_USER")] = None,
    rpc_password: Annotated[
        str | None, typer.Option("--rpc-password", envvar="BITCOIN_RPC_PASSWORD")
    ] = None,
    neutrino_url: Annotated[str | None, typer.Option("--neutrino-url")] = None,
    retry_timeout: Annotated[
        float | None, typer.Option("--retry-timeout", help="First retry delay in seconds")
    ] = None,
    retry_attempts: Annotated[
        int | None, typer.Option("--retry-attempts", help="Retries per backend call")
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """Backend selection shared by every command.

    Options left unset fall back to CHAINSOURCE_* environment settings.
    """
    setup_logging(log_level)
    options = {
        "bitcoin-client": client,
        "bitcoin-fallback-client": fallback_client,
        "bitcoin-esplora-url": esplora_url,
        "bitcoin-rpcconnect": rpc_host,
        "bitcoin-rpcport": rpc_port,
        "bitcoin-rpcuser": rpc_user,
        "bitcoin-rpcpassword": rpc_password,
        "bitcoin-neutrino-url": neutrino_url,
        "bitcoin-retry-timeout": retry_timeout,
        "bitcoin-retry-attempts": retry_attempts,
    }
    try:
        ctx.obj = settings_from_options(options, network)
    except ChainSourceError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


def _run(settings: Settings, call: Callable[[BackendDispatcher], Awaitable[Any]]) -> None:
    try:
        result = asyncio.run(_execute(settings, call))
    except ChainSourceError as e:
        logger.error(f"Failed: {e}")
        raise typer.Exit(1) from e
    typer.echo(json.dumps(result.to_wire(), indent=2))


async def _execute(settings: Settings, call: Callable[[BackendDispatcher], Awaitable[Any]]) -> Any:
    dispatcher = create_dispatcher(settings)
    try:
        return await call(dispatcher)
    finally:
        await dispatcher.close()


def _validate(model: type[Any], **params: Any) -> Any:
    try:
        return model(**params)
    except ValidationError as e:
        logger.error(f"Invalid arguments: {e}")
        raise typer.Exit(2) from e


@app.command()
def chaininfo(
    ctx: typer.Context,
    last_height: Annotated[
        int | None, typer.Option("--last-height", help="Height the caller already knows")
    ] = None,
) -> None:
    """Show chain name, header and block counts and IBD state."""
    request = _validate(GetChainInfoRequest, last_height=last_height)
    _run(ctx.obj, lambda d: d.chain_info(request.last_height))


@app.command()
def fees(ctx: typer.Context) -> None:
    """Show the fee schedule in sat/kvB."""
    _run(ctx.obj, lambda d: d.estimate_fees())


@app.command()
def block(
    ctx: typer.Context,
    height: Annotated[int, typer.Argument(help="Block height")],
) -> None:
    """Fetch the raw block at a height (null past the tip)."""
    request = _validate(BlockByHeightRequest, height=height)
    _run(ctx.obj, lambda d: d.block_by_height(request.height))


@app.command()
def utxo(
    ctx: typer.Context,
    txid: Annotated[str, typer.Argument(help="Transaction id")],
    vout: Annotated[int, typer.Argument(help="Output index")],
) -> None:
    """Look up an unspent output (null if unknown or spent)."""
    request = _validate(GetUtxoRequest, txid=txid, vout=vout)
    _run(ctx.obj, lambda d: d.get_utxo(request.txid, request.vout))


@app.command()
def broadcast(
    ctx: typer.Context,
    tx: Annotated[str, typer.Argument(help="Hex-encoded signed transaction")],
    allow_high_fees: Annotated[
        bool, typer.Option("--allow-high-fees", help="Skip the node's absurd-fee check")
    ] = False,
) -> None:
    """Broadcast a raw transaction."""
    request = _validate(SendRawTransactionRequest, tx=tx, allowhighfees=allow_high_fees)
    _run(ctx.obj, lambda d: d.send_raw_transaction(request.tx, request.allowhighfees))


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
