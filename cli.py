#!/usr/bin/env python3
"""
Command-line front end for the fund market data engine.
Usage: python cli.py COMMAND FUND_CODE [options]
"""

import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path

from errors import FundDataError
from pipeline.market_service import FundMarketService
from pipeline.portfolio import (
    build_portfolio_summary,
    build_profit_trend,
    fetch_histories,
    fetch_quotes,
    successful_values,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Query fund quotes, history, holdings and analytics',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py quote 110011
  python cli.py history 110011 --range 1y --end-date 2024-06-28
  python cli.py holdings 110011 --topline 10 --year 2024 --month 6
  python cli.py analysis 110011 --horizon 3y
  python cli.py portfolio holdings.json --range 90d
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Log fetches and cache activity')
    parser.add_argument('--force', action='store_true', help='Bypass cached values')

    sub = parser.add_subparsers(dest='command', required=True)

    for name, help_text in [
        ('quote', 'Latest official NAV and intraday estimate'),
        ('basic', 'Fund name, type, company and tags'),
        ('industry', 'Industry allocation of the latest quarter'),
        ('allocation', 'Quarterly asset allocation'),
        ('grand-total', 'Cumulative return versus peers and indexes'),
        ('ranking', 'Peer-group rank and percentile'),
    ]:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument('code', help='Six-digit fund code')

    history = sub.add_parser('history', help='NAV history for a range')
    history.add_argument('code', help='Six-digit fund code')
    history.add_argument('--range', default='30d', help='30d, 90d, 1y, 3y or since (default: 30d)')
    history.add_argument('--end-date', help='Window end (YYYY-MM-DD)')

    holdings = sub.add_parser('holdings', help='Top holdings for a quarter')
    holdings.add_argument('code', help='Six-digit fund code')
    holdings.add_argument('--topline', type=int, default=10, help='Number of holdings (default: 10)')
    holdings.add_argument('--year', type=int, help='Disclosure year')
    holdings.add_argument('--month', type=int, help='Disclosure month')

    compare = sub.add_parser('compare', help='Top holdings versus the previous quarter')
    compare.add_argument('code', help='Six-digit fund code')
    compare.add_argument('--topline', type=int, default=10, help='Number of holdings (default: 10)')

    analysis = sub.add_parser('analysis', help='Return, risk and drawdown analysis')
    analysis.add_argument('code', help='Six-digit fund code')
    analysis.add_argument('--horizon', default='1y', help='1y, 3y or since (default: 1y)')

    portfolio = sub.add_parser('portfolio', help='Portfolio summary and profit trend')
    portfolio.add_argument('holdings_file', help='JSON list of {code, name, hold_shares, buy_price}')
    portfolio.add_argument('--range', default='30d', help='Trend range (default: 30d)')

    return parser


async def run_portfolio(service: FundMarketService, holdings_file: str, range_name: str, force: bool):
    holdings = json.loads(Path(holdings_file).read_text(encoding='utf-8'))
    codes = [h['code'] for h in holdings]

    quote_outcomes = await fetch_quotes(service, codes, force=force)
    history_outcomes = await fetch_histories(service, codes, range_name, force=force)
    quotes = successful_values(quote_outcomes)

    return {
        'summary': build_portfolio_summary(holdings, quotes),
        'trend': build_profit_trend(holdings, successful_values(history_outcomes), quotes),
        'failures': [
            {'code': o.key, 'error_kind': o.error_kind, 'message': o.message}
            for o in quote_outcomes + history_outcomes if not o.ok
        ],
    }


async def run_command(args) -> object:
    service = FundMarketService()
    force = args.force

    if args.command == 'quote':
        return await service.get_quote(args.code, force=force)
    if args.command == 'history':
        return await service.get_nav_history(args.code, args.range, args.end_date, force=force)
    if args.command == 'basic':
        return await service.get_basic_info(args.code, force=force)
    if args.command == 'industry':
        return await service.get_industry_config(args.code, force=force)
    if args.command == 'allocation':
        return await service.get_asset_allocation(args.code, force=force)
    if args.command == 'holdings':
        return await service.get_top_holdings(
            args.code, args.topline, args.year, args.month, force=force
        )
    if args.command == 'compare':
        return await service.get_top_holdings_comparison(args.code, args.topline, force=force)
    if args.command == 'grand-total':
        return await service.get_grand_total(args.code, force=force)
    if args.command == 'ranking':
        return await service.get_similar_ranking(args.code, force=force)
    if args.command == 'analysis':
        return await service.get_analysis(args.code, args.horizon, force=force)
    if args.command == 'portfolio':
        return await run_portfolio(service, args.holdings_file, args.range, force)

    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        result = asyncio.run(run_command(args))
    except FundDataError as e:
        print(f"ERROR [{e.kind}]: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result, ensure_ascii=False, indent=2))


if __name__ == '__main__':
    main()
