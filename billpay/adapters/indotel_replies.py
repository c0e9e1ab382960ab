"""Normalisation of Indotel replies.

The provider answers either with JSON (``{"status", "message", "data"}``)
or with delimited plain text (``STATUS:SUKSES|REF:123|MSG:...``). Everything
in this module turns such a body into a ``GatewayResult`` so that no caller
outside the adapters package ever looks at provider syntax.

Classification of the status field(s):

- success statuses → ``outcome=success``
- pending statuses → ``outcome=failure`` (not settled yet, message kept)
- failure statuses, and any other numeric response code → ``GatewayRejected``
- anything unrecognised or unparseable → ``outcome=failure`` with the raw
  payload preserved; never an exception
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from billpay.exceptions import GatewayRejected
from billpay.schemas.gateway import GatewayOutcome, GatewayResult

SUCCESS_STATUSES = frozenset({"success", "sukses", "berhasil", "ok", "00", "0", "200", "1", "true"})
PENDING_STATUSES = frozenset({"pending", "proses", "process", "processing", "68", "waiting", "menunggu"})
FAILURE_STATUSES = frozenset({"failed", "fail", "gagal", "error", "rejected", "ditolak", "false"})

STATUS_KEYS = ("status", "rc", "response_code", "status_code", "result")
MESSAGE_KEYS = ("message", "msg", "keterangan", "pesan", "desc", "description")
REF_KEYS = (
    "ref",
    "ref_id",
    "refid",
    "reference",
    "reference_id",
    "trxid",
    "trx_id",
    "transaction_id",
    "serial_number",
    "sn",
    "ref_2",
)
AMOUNT_KEYS = ("total_amount", "amount", "nominal", "tagihan", "price", "harga", "balance", "saldo")

_FIELD_SPLIT = re.compile(r"[\r\n|]+")
# ``;`` and ``&`` only separate fields when another KEY:/KEY= follows
_SUBFIELD_SPLIT = re.compile(r"[;&](?=\s*[A-Za-z_][\w ]*?\s*[:=])")
_PAIR = re.compile(r"\s*([^:=]*?)\s*[:=]\s*")
_DECIMAL_AMOUNT = re.compile(r"^\d+\.\d{1,2}$")


def _field_key(raw: str) -> str:
    return raw.strip().lower().replace(" ", "_")


def _scan_field(field: str, pairs: dict[str, str]) -> None:
    bounds = [(m.start(), m.end()) for m in _SUBFIELD_SPLIT.finditer(field)]
    starts = [0] + [end for _, end in bounds]
    ends = [start for start, _ in bounds] + [len(field)]
    for start, end in zip(starts, ends):
        match = _PAIR.match(field, start, end)
        if match is None or not match.group(1):
            continue
        key = _field_key(match.group(1))
        if key in MESSAGE_KEYS:
            # Free text runs to the end of the field, separators included
            pairs.setdefault(key, field[match.end():].strip())
            return
        pairs.setdefault(key, field[match.end():end].strip())


def parse_delimited(text: str) -> dict[str, str]:
    """Scan ``KEY:VALUE`` / ``KEY=VALUE`` pairs out of a plain-text reply.

    Fields are separated by newlines or ``|``; ``;`` and ``&`` separate
    fields only in front of another key. A message value keeps everything up
    to the end of its field. Keys are lower-cased with spaces turned into
    underscores. Segments without a separator are ignored.
    """
    pairs: dict[str, str] = {}
    for field in _FIELD_SPLIT.split(text):
        if field.strip():
            _scan_field(field, pairs)
    return pairs


def _decode_json(text: str) -> Any:
    try:
        decoded = json.loads(text)
    except ValueError:
        return None
    return decoded if isinstance(decoded, (dict, list)) else None


def decode_body(text: str) -> Any:
    """Decode a reply body into a dict (or list); ``None`` if nothing usable."""
    stripped = text.strip()
    if not stripped:
        return None
    decoded = _decode_json(stripped)
    if decoded is not None:
        return decoded
    pairs = parse_delimited(stripped)
    return pairs or None


def parse_amount(value: Any) -> int | None:
    """Parse ``50500``, ``"50.500"``, ``"Rp 50.500"`` or ``"50500.00"`` into 50500."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip()
    if _DECIMAL_AMOUNT.match(text):
        return int(float(text))
    digits = re.sub(r"\D", "", text)
    return int(digits) if digits else None


def _first(sources: Iterable[Mapping[str, Any]], keys: Iterable[str]) -> Any:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


def _lower_keys(mapping: Mapping[str, Any]) -> dict[str, Any]:
    return {str(k).lower(): v for k, v in mapping.items()}


def _classify(status: Any) -> str:
    """Return ``success``, ``pending``, ``failure`` or ``unknown``."""
    if status is None:
        return "unknown"
    token = str(status).strip().lower()
    if token in SUCCESS_STATUSES:
        return "success"
    if token in PENDING_STATUSES:
        return "pending"
    if token in FAILURE_STATUSES or token.isdigit():
        return "failure"
    return "unknown"


def normalize_reply(body: str) -> GatewayResult:
    """Turn a raw reply body into a ``GatewayResult``.

    Raises:
        GatewayRejected: If the provider reported a business failure.
    """
    decoded = _decode_json(body.strip())
    payload = decoded if decoded is not None else decode_body(body)
    # Text replies keep the body exactly as received
    raw_payload: Any = decoded if decoded is not None else body

    if not isinstance(payload, dict):
        return GatewayResult(
            outcome=GatewayOutcome.FAILURE,
            message="Unrecognised gateway reply",
            raw_payload=raw_payload,
        )

    top = _lower_keys(payload)
    data = top.get("data")
    nested = _lower_keys(data) if isinstance(data, Mapping) else {}
    # Most specific first: per-transaction data, then the envelope
    sources = (nested, top)

    verdicts = [_classify(src.get(key)) for src in (top, nested) for key in STATUS_KEYS if key in src]
    message = _first(sources, MESSAGE_KEYS)
    message = str(message) if message is not None else ""

    if "failure" in verdicts:
        raise GatewayRejected(message or "Gateway rejected the request", raw_payload=raw_payload)

    provider_ref = _first(sources, REF_KEYS)
    amount = parse_amount(_first(sources, AMOUNT_KEYS))
    succeeded = bool(verdicts) and all(v == "success" for v in verdicts)

    if not succeeded and not message:
        message = "Gateway reply pending" if "pending" in verdicts else "Unrecognised gateway reply"

    return GatewayResult(
        outcome=GatewayOutcome.SUCCESS if succeeded else GatewayOutcome.FAILURE,
        provider_ref=str(provider_ref) if provider_ref is not None else None,
        amount=amount,
        message=message,
        raw_payload=raw_payload,
    )
