from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from config import AppSettings, config
from services.price_errors import FiatPriceError
from services.price_service import FiatPriceService
from services.price_sources import PriceSourceConfig
from services.price_types import BackendKind, Granularity, PriceQuery
from utils.formatting import format_currency, format_decimal


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Historical fiat prices for bitcoin amounts.")
    parser.add_argument("--backend", choices=[kind.value for kind in BackendKind], help="Price backend override.")
    parser.add_argument(
        "--granularity",
        choices=[granularity.value for granularity in Granularity],
        help="Price granularity, required for the coincap backend.",
    )
    parser.add_argument("--currency", help="Currency of the custom price file (default: settings, USD).")
    parser.add_argument("--prices-csv", type=Path, help="Path to a unix_timestamp,price CSV for the custom backend.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    estimate = subparsers.add_parser("estimate", help="Get the fiat value of an amount of BTC.")
    estimate.add_argument("--amt-msat", type=int, required=True, help="Amount in millisatoshi.")
    estimate.add_argument(
        "--timestamp",
        type=int,
        help="Unix time at which the price should be quoted (default: now).",
    )

    rates = subparsers.add_parser("rates", help="Get the BTC price at a set of timestamps.")
    rates.add_argument(
        "--timestamp",
        type=int,
        action="append",
        required=True,
        dest="timestamps",
        help="Unix time to price; may be repeated.",
    )

    return parser.parse_args(argv)


def build_source_config(args: argparse.Namespace, settings: AppSettings) -> PriceSourceConfig:
    defaults = PriceSourceConfig.from_settings(settings)
    return PriceSourceConfig(
        backend=BackendKind(args.backend) if args.backend else defaults.backend,
        granularity=Granularity(args.granularity) if args.granularity else defaults.granularity,
        currency=args.currency.upper() if args.currency else defaults.currency,
        custom_prices_path=args.prices_csv or defaults.custom_prices_path,
    )


def run_estimate(service: FiatPriceService, amount_msat: int, unix_ts: int | None) -> str:
    if amount_msat == 0:
        raise ValueError("non-zero amount required")

    timestamp = (
        datetime.fromtimestamp(unix_ts, tz=timezone.utc) if unix_ts is not None else datetime.now(timezone.utc)
    )
    query = PriceQuery(identifier="estimate", amount_msat=amount_msat, timestamp=timestamp)
    estimate = service.value_queries([query])[query.identifier]

    currency = service.source_config.currency
    return (
        f"{amount_msat} msat = {format_currency(estimate.value)} {currency}, "
        f"priced at {estimate.price.timestamp.isoformat()}"
    )


def run_rates(service: FiatPriceService, unix_timestamps: Sequence[int]) -> str:
    timestamps = [datetime.fromtimestamp(ts, tz=timezone.utc) for ts in unix_timestamps]
    prices = service.get_prices(timestamps)
    payload = [
        {
            "timestamp": int(ts.timestamp()),
            "price": format_decimal(prices[ts].price),
            "price_timestamp": prices[ts].timestamp.isoformat(),
        }
        for ts in timestamps
    ]
    return json.dumps(payload, indent=2)


def main(argv: Sequence[str] | None = None, *, settings: AppSettings | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    resolved = settings or config()
    service = FiatPriceService(build_source_config(args, resolved), settings=resolved)

    try:
        if args.command == "estimate":
            output = run_estimate(service, args.amt_msat, args.timestamp)
        else:
            output = run_rates(service, args.timestamps)
    except (FiatPriceError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
