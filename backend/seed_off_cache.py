#!/usr/bin/env python3
"""
Open Food Facts bulk seeder.

Two modes:
  Country mode (default): walks country-filtered search pages and upserts
  every product into food_products.

      python seed_off_cache.py --country Poland --lang pl --pages 5 --page-size 100

  Terms mode: drives a resumable seed run to completion, one unit of work
  per step, exactly as the scheduler-driven /api/off/seed endpoint does.

      python seed_off_cache.py --terms mleko chleb ser
      python seed_off_cache.py --run-id <uuid>     # resume an existing run
"""

import argparse
import sys
import time
from datetime import datetime
from typing import Dict, List, Optional

from foodsync.config import OFF_SOURCE, SEED_DEFAULT_PAGE_SIZE
from foodsync.errors import FoodSyncError
from foodsync.logger import get_logger
from foodsync.services.database import db_pool
from foodsync.services.food_products import upsert_food_products
from foodsync.services.lookup import clean_locale
from foodsync.services.normalizer import normalize_search_results
from foodsync.services.off_client import OffClient, clamp_page_size
from foodsync.services.seed_runner import (
    STATUS_DONE,
    create_seed_run,
    normalize_terms,
    run_seed_step,
)

logger = get_logger("seed_off_cache")

DEFAULTS = {
    'country': 'Poland',
    'lang': 'pl',
    'page_size': 100,
    'pages': 1,
    'delay_ms': 250,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Open Food Facts bulk seeder')
    parser.add_argument('--country', default=DEFAULTS['country'],
                        help='Countries tag to filter on (country mode)')
    parser.add_argument('--lang', default=DEFAULTS['lang'],
                        help='Language code used for names')
    parser.add_argument('--page-size', type=int, default=DEFAULTS['page_size'],
                        help='Products per page (1-100)')
    parser.add_argument('--pages', type=int, default=DEFAULTS['pages'],
                        help='Number of pages to fetch (country mode)')
    parser.add_argument('--delay-ms', type=int, default=DEFAULTS['delay_ms'],
                        help='Pause between upstream requests')
    parser.add_argument('--max', type=int, default=None,
                        help='Stop after this many products (country mode)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Fetch and normalize but do not write (country mode)')
    parser.add_argument('--terms', nargs='+', default=None,
                        help='Run the resumable term seeder over these terms')
    parser.add_argument('--run-id', default=None,
                        help='Resume an existing seed run')
    args = parser.parse_args(argv)

    args.page_size = clamp_page_size(args.page_size)
    args.pages = max(1, args.pages or DEFAULTS['pages'])
    args.delay_ms = max(0, args.delay_ms or 0)
    if args.max is not None:
        args.max = max(1, args.max)
    return args


def seed_country(conn, client: OffClient, args: argparse.Namespace) -> Dict[str, object]:
    """
    Fetch country-filtered pages and upsert them.

    Stops early on an empty page or once --max products were fetched.
    """
    fetched_total = 0
    written_total = 0
    pages_fetched = 0
    names: List[str] = []

    for page in range(1, args.pages + 1):
        payload = client.search('', args.lang, page, args.page_size, country=args.country)
        items = normalize_search_results(payload, args.lang)

        if not items:
            print(f"Page {page}: returned 0 products, stopping early.", flush=True)
            break

        if args.max is not None:
            remaining = args.max - fetched_total
            if remaining <= 0:
                print("Reached --max before processing this page, stopping.", flush=True)
                break
            items = items[:remaining]

        fetched_total += len(items)
        pages_fetched += 1
        names.extend(item.name for item in items)
        print(f"Page {page}: returned {len(items)}, fetched total={fetched_total}", flush=True)

        if args.dry_run:
            written_total += len(items)
            print(f"Page {page}: dry-run, would upsert {len(items)}, running total={written_total}",
                  flush=True)
        else:
            written_total += upsert_food_products(conn, items, OFF_SOURCE)
            conn.commit()
            print(f"Page {page}: upserted {len(items)}, running upserted total={written_total}",
                  flush=True)

        if args.max is not None and fetched_total >= args.max:
            print(f"Reached --max={args.max}, stopping pagination.", flush=True)
            break

        if page < args.pages and args.delay_ms > 0:
            time.sleep(args.delay_ms / 1000)

    return {
        'pages_fetched': pages_fetched,
        'fetched': fetched_total,
        'written': written_total,
        'first_name': names[0] if names else '-',
        'last_name': names[-1] if names else '-',
    }


def seed_terms(conn, client: OffClient, args: argparse.Namespace) -> Dict[str, object]:
    """Drive a seed run step by step until it is done or a step fails."""
    run_id = args.run_id
    if not run_id:
        run = create_seed_run(conn, clean_locale(args.lang), normalize_terms(args.terms))
        run_id = run.id
        print(f"Started seed run {run_id}", flush=True)

    page_size = args.page_size if args.page_size >= 20 else SEED_DEFAULT_PAGE_SIZE
    steps = 0
    while True:
        result = run_seed_step(conn, client, run_id, page_size)
        steps += 1
        progress = result['progress']
        print(f"[{result['status']}] term={progress['term']} page={progress['page']} "
              f"processed={progress['processed']} upserted={progress['upserted']} "
              f"errors={progress['errors']}", flush=True)
        if result['status'] == STATUS_DONE:
            break
        if args.delay_ms > 0:
            time.sleep(args.delay_ms / 1000)

    return {'run_id': run_id, 'steps': steps, **result['progress']}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    print("=" * 60, flush=True)
    print("Open Food Facts Seeder", flush=True)
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", flush=True)
    print("=" * 60, flush=True)

    client = OffClient()
    try:
        if args.terms or args.run_id:
            db_pool.initialize()
            with db_pool.get_connection() as conn:
                summary = seed_terms(conn, client, args)
            print(f"\nRun {summary['run_id']} finished after {summary['steps']} steps", flush=True)
            print(f"Processed: {summary['processed']}", flush=True)
            print(f"Upserted:  {summary['upserted']}", flush=True)
            print(f"Errors:    {summary['errors']}", flush=True)
            return 0

        print(f"country={args.country}, lang={args.lang}, pageSize={args.page_size}, "
              f"pages={args.pages}, delayMs={args.delay_ms}, max={args.max or 'none'}, "
              f"dryRun={args.dry_run}", flush=True)
        if args.dry_run:
            summary = seed_country(None, client, args)
        else:
            db_pool.initialize()
            with db_pool.get_connection() as conn:
                summary = seed_country(conn, client, args)

        print(f"\nPages fetched: {summary['pages_fetched']}", flush=True)
        print(f"Expected pageSize*pages: {args.page_size * args.pages}", flush=True)
        print(f"Fetched total: {summary['fetched']}", flush=True)
        print(f"First product name: {summary['first_name']}", flush=True)
        print(f"Last product name: {summary['last_name']}", flush=True)
        print(f"Total upserted: {summary['written']}{' (dry-run)' if args.dry_run else ''}",
              flush=True)
        return 0
    except FoodSyncError as e:
        logger.error("Seeder failed: %s", e.message)
        return 1
    finally:
        client.close()
        db_pool.close()


if __name__ == '__main__':
    sys.exit(main())
