"""Database and Redis connections."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from typing import Any

import redis
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$(\d+)")
_DEFAULT_REDIS_HOST = "localhost"
_DEFAULT_REDIS_PORT = 6379


def _bind(sql: str, args: tuple[Any, ...]):
    """Turn positional $n placeholders into named bind parameters."""
    params: dict[str, Any] = {}

    def replace(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if not 1 <= index <= len(args):
            raise ValueError(f"no argument for placeholder ${index}")
        name = f"p{index}"
        params[name] = args[index - 1]
        return f":{name}"

    return text(_PLACEHOLDER.sub(replace, sql)), params


def _encode(message: Any) -> str:
    if hasattr(message, "to_dict"):
        message = message.to_dict()
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


class Database:
    """SQL access with positional $n parameters."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def execute(self, sql: str, *args: Any) -> None:
        """Run a statement in its own committed transaction."""
        statement, params = _bind(sql, args)
        with self._engine.begin() as conn:
            conn.execute(statement, params)

    def query(self, sql: str, *args: Any) -> list[tuple[Any, ...]]:
        """Run a query and return all rows as tuples."""
        statement, params = _bind(sql, args)
        with self._engine.connect() as conn:
            return [tuple(row) for row in conn.execute(statement, params)]

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class RedisBus:
    """Publishing and stream access with JSON-encoded values."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def publish(self, channel: str, message: Any) -> None:
        """Publish a message encoded as JSON."""
        self._client.publish(channel, _encode(message))

    def xadd(self, stream: str, values: Mapping[str, Any]) -> str:
        """Append an entry whose values are each JSON-encoded; return its id."""
        fields: dict[str, str] = {}
        for key, value in values.items():
            try:
                fields[key] = _encode(value)
            except (TypeError, ValueError) as exc:
                logger.warning("Error marshaling value for key %s: %s", key, exc)
        entry_id = self._client.xadd(stream, fields)
        return entry_id.decode() if isinstance(entry_id, bytes) else entry_id

    def xread(
        self,
        streams: Mapping[str, str],
        count: int | None = None,
        block: int | None = None,
    ) -> list[tuple[str, list[tuple[str, dict[str, Any]]]]]:
        """Read entries; returns (stream, [(id, fields), ...]) pairs."""
        reply = self._client.xread(dict(streams), count=count, block=block)
        if not reply:
            return []
        items = reply.items() if isinstance(reply, dict) else reply
        result = []
        for name, messages in items:
            if messages and isinstance(messages[0], list) and len(messages) == 1 and messages[0] and isinstance(messages[0][0], (list, tuple)):
                messages = messages[0]
            result.append(
                (name, [(message_id, dict(fields or {})) for message_id, fields in messages])
            )
        return result

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as exc:
            logger.warning("Error closing Redis connection: %s", exc)


def build_database_url(env: Mapping[str, str] | None = None) -> str:
    """Build the PostgreSQL URL from DB_* settings; missing ones are empty."""
    env = os.environ if env is None else env
    return "postgresql://{}:{}@{}:{}/{}?sslmode=disable".format(
        env.get("DB_USER", ""),
        env.get("DB_PASSWORD", ""),
        env.get("DB_HOST", ""),
        env.get("DB_PORT", ""),
        env.get("DB_NAME", ""),
    )


def connect_database(url: str) -> Database:
    """Create a database handle and verify that it connects."""
    try:
        engine = create_engine(url)
    except (ArgumentError, ImportError) as exc:
        raise ValueError(f"unable to parse database config: {exc}") from exc
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        engine.dispose()
        raise ConnectionError(f"unable to connect to database: {exc}") from exc
    logger.info("Successfully connected to database")
    return Database(engine)


def _split_addr(addr: str | None) -> tuple[str, int]:
    if not addr:
        return _DEFAULT_REDIS_HOST, _DEFAULT_REDIS_PORT
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, _DEFAULT_REDIS_PORT
    host = host.strip("[]") or _DEFAULT_REDIS_HOST
    if not port:
        return host, _DEFAULT_REDIS_PORT
    if not port.isdigit():
        raise ValueError(f"invalid Redis port in address {addr!r}")
    return host, int(port)


def connect_redis(addr: str | None, password: str | None = None) -> RedisBus:
    """Connect to Redis at host:port, database 0, and check it with a ping."""
    host, port = _split_addr(addr)
    client = redis.Redis(
        host=host, port=port, password=password or None, db=0, decode_responses=True
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        client.close()
        raise ConnectionError(f"unable to connect to Redis: {exc}") from exc
    logger.info("Successfully connected to Redis")
    return RedisBus(client)