"""
Infrastructure adapters for the trading bounded context.

Each adapter implements a domain port (ABC) and connects
to external systems: the SQL store, Yahoo Finance, the ECB, Telegram.
"""
