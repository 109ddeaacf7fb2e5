"""Helpers for turning configured DSNs into SQLAlchemy URLs."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.engine import URL, make_url

try:  # pragma: no cover - optional dependency during import
    from psycopg import conninfo as _psycopg_conninfo
except ModuleNotFoundError as exc:  # pragma: no cover - optional dependency
    _psycopg_conninfo = None  # type: ignore[assignment]
    _PSYCOPG_IMPORT_ERROR = exc
else:  # pragma: no cover - import succeeds under normal conditions
    _PSYCOPG_IMPORT_ERROR = None


_LIBPQ_KEYS = ("host", "port", "dbname", "user", "password")


def _require_conninfo() -> Any:
    if _psycopg_conninfo is None:
        raise ModuleNotFoundError(
            "psycopg is required to parse libpq keyword DSNs (pip install rowbound[postgres])"
        ) from _PSYCOPG_IMPORT_ERROR
    return _psycopg_conninfo


def _coerce_port(value: str | int | None) -> int | None:
    if value in (None, ""):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid PostgreSQL port value: {value!r}") from exc


def _url_from_libpq(mapping: Mapping[str, str]) -> URL:
    query = {k: v for k, v in mapping.items() if k not in _LIBPQ_KEYS}
    return URL.create(
        drivername="postgresql+psycopg",
        username=mapping.get("user") or None,
        password=mapping.get("password") or None,
        host=mapping.get("host") or None,
        port=_coerce_port(mapping.get("port")),
        database=mapping.get("dbname") or None,
        query=query,
    )


def normalize_database_url(raw_url: str) -> str:
    """Return a SQLAlchemy URL string for ``raw_url``.

    SQLAlchemy URLs pass through unchanged except that a bare ``postgresql``
    scheme selects the psycopg driver. libpq keyword DSNs
    (``host=... dbname=...``) are converted into ``postgresql+psycopg`` URLs.
    """

    raw = raw_url.strip()
    if not raw:
        raise ValueError("database URL must be a non-empty string")

    if "://" in raw:
        url = make_url(raw)
        if url.drivername in ("postgresql", "postgres"):
            url = url.set(drivername="postgresql+psycopg")
        return url.render_as_string(hide_password=False)

    conninfo = _require_conninfo()
    url = _url_from_libpq(conninfo.conninfo_to_dict(raw))
    return url.render_as_string(hide_password=False)


__all__ = ["normalize_database_url"]
