from __future__ import annotations

import base64
import json
import random
import re
import secrets
from dataclasses import dataclass

from .errors import ItemDecodeError

BLOB_LEN = 16
REG_ID_BOUND = 1_000_000_000
ISSUER_ID_BOUND = 10

_BLOB_RE = re.compile(r"[A-Za-z0-9_-]{22}")
_FIELDS = {"der", "ocsp_resp", "reg_id", "precert", "issuer_id"}


@dataclass(frozen=True)
class OrphanedItem:
    der: bytes
    ocsp_resp: bytes
    reg_id: int
    precert: bool
    issuer_id: int


def new_orphaned_item(rng: random.Random) -> OrphanedItem:
    # Blobs stand in for certificate bytes; keep them unpredictable even when
    # the key sequence is seeded.
    return OrphanedItem(
        der=secrets.token_bytes(BLOB_LEN),
        ocsp_resp=secrets.token_bytes(BLOB_LEN),
        reg_id=rng.randrange(REG_ID_BOUND),
        precert=True,
        issuer_id=rng.randrange(ISSUER_ID_BOUND),
    )


def b64u_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def _decode_blob(obj: dict, name: str) -> bytes:
    # Blobs are exactly BLOB_LEN bytes, unpadded base64url, with zero
    # trailing bits so that every blob has one spelling.
    v = obj[name]
    if not isinstance(v, str) or not _BLOB_RE.fullmatch(v):
        raise ItemDecodeError(f"failed to unmarshal orphan: bad {name}")
    raw = base64.urlsafe_b64decode(v + "==")
    if b64u_encode(raw) != v:
        raise ItemDecodeError(f"failed to unmarshal orphan: non-canonical {name}")
    return raw


def encode_orphan(item: OrphanedItem) -> bytes:
    obj = {
        "der": b64u_encode(item.der),
        "ocsp_resp": b64u_encode(item.ocsp_resp),
        "reg_id": item.reg_id,
        "precert": item.precert,
        "issuer_id": item.issuer_id,
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_orphan(raw: bytes) -> OrphanedItem:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ItemDecodeError(f"failed to unmarshal orphan: {e}") from e
    if not isinstance(obj, dict) or set(obj.keys()) != _FIELDS:
        raise ItemDecodeError("failed to unmarshal orphan: unexpected fields")

    reg_id = obj["reg_id"]
    issuer_id = obj["issuer_id"]
    # bool is an int subclass; reject it explicitly for the integer fields.
    for name, v in (("reg_id", reg_id), ("issuer_id", issuer_id)):
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise ItemDecodeError(f"failed to unmarshal orphan: bad {name}")
    if not isinstance(obj["precert"], bool):
        raise ItemDecodeError("failed to unmarshal orphan: bad precert")

    return OrphanedItem(
        der=_decode_blob(obj, "der"),
        ocsp_resp=_decode_blob(obj, "ocsp_resp"),
        reg_id=reg_id,
        precert=obj["precert"],
        issuer_id=issuer_id,
    )
