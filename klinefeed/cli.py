"""Command line interface for kline fetching and backtests."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import get_settings
from .io.binance_rest import BinanceKlinesFetcher, FetchError
from .services import BacktestService, MissingFieldsError, NoCandlesError
from .utils.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)


def parse_time_ms(value: str) -> int:
    """Accept epoch milliseconds or anything ``pd.Timestamp`` understands (UTC assumed)."""
    value = value.strip()
    if value.lstrip("-").isdigit():
        return int(value)
    try:
        ts = pd.Timestamp(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid timestamp: {value!r}") from exc
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.timestamp() * 1000)


def cmd_fetch(symbol: str, interval: str, start_ms: int, end_ms: int) -> Dict[str, Any]:
    fetcher = BinanceKlinesFetcher.from_settings(get_settings().fetch)
    candles = asyncio.run(fetcher.fetch_candles(symbol, interval, start_ms, end_ms))
    LOGGER.info("Fetched %s candles for %s %s", len(candles), symbol, interval)
    return {
        "symbol": symbol.upper(),
        "interval": interval,
        "count": len(candles),
        "firstOpenTime": candles[0].open_time if candles else None,
        "lastOpenTime": candles[-1].open_time if candles else None,
    }


def cmd_backtest(request_path: Path, with_candles: bool = False) -> Dict[str, Any]:
    payload = json.loads(Path(request_path).read_text(encoding="utf-8"))
    service = BacktestService.from_settings(get_settings())
    result = asyncio.run(service.run(payload))
    if not with_candles:
        result.pop("candles", None)
    return result


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Kline fetch and backtest CLI")
    sub = parser.add_subparsers(dest="command")

    fetch = sub.add_parser("fetch", help="fetch candles from the exchange and print a summary")
    fetch.add_argument("symbol")
    fetch.add_argument("interval")
    fetch.add_argument("start", type=parse_time_ms)
    fetch.add_argument("end", type=parse_time_ms)

    backtest = sub.add_parser("backtest", help="run a backtest request stored as JSON")
    backtest.add_argument("request", type=Path)
    backtest.add_argument("--with-candles", action="store_true")

    args = parser.parse_args(argv)
    configure_logging(get_settings().log_level)

    if args.command == "fetch":
        try:
            output = cmd_fetch(args.symbol, args.interval, args.start, args.end)
        except FetchError as exc:
            print(json.dumps({"error": str(exc)}), file=sys.stderr)
            return 1
    elif args.command == "backtest":
        try:
            output = cmd_backtest(args.request, with_candles=args.with_candles)
        except (MissingFieldsError, NoCandlesError) as exc:
            print(json.dumps({"error": str(exc)}), file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 2

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
