"""signal_relay – trading-signal webhook relay with a deduplicated news feed.

Receives TradingView-style alerts over HTTP, optionally attaches a rendered
chart, and fans the formatted message out to Telegram and WhatsApp (Whapi).
A background poller pulls the Foreks news feed per tag, drops stale and
already-relayed items via a SQLite dedup store, and relays the rest to the
same channel kinds.

Run standalone with ``python -m signal_relay.run``.
"""
