from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from signal_relay.app import build_services
from signal_relay.config import Config
from signal_relay.formatting import format_news_plain
from signal_relay.log_redaction import apply_global_log_redaction


async def _dry_run(services, tags: list[str]) -> None:
    poller = services.poller
    for tag in tags:
        items = await poller.source.fetch_latest(poller.locale, tag, poller.batch_size)
        print(f"== {tag}: {len(items)} items")
        for item in items:
            seen = services.store.has(item.item_id) if item.is_valid else False
            print(f"-- {item.item_id or '<no id>'} seen={seen}")
            print(format_news_plain(item))
            print()


async def _main(args: argparse.Namespace) -> int:
    cfg = Config()
    if not cfg.news_enabled:
        print("NEWS_ENABLED=0, nothing to do", file=sys.stderr)
        return 1
    services = build_services(cfg)
    try:
        tags = [t.upper() for t in args.tag] if args.tag else list(cfg.news_tags)
        if args.dry_run:
            await _dry_run(services, tags)
            return 0
        services.poller.tags = tags
        summary = await services.poller.poll_once()
        print(summary.describe())
        return 0 if not summary.undelivered and not summary.failed_tags else 2
    finally:
        await services.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one news check cycle.")
    parser.add_argument("--tag", action="append", help="Poll only this tag (repeatable).")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and print items without sending or marking them.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    apply_global_log_redaction()
    raise SystemExit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
