from __future__ import annotations

import json
import time
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import jsonschema
from jsonschema import Draft202012Validator

from .errors import DurabilityViolation, HarnessError, OracleError, ProtocolViolation

if TYPE_CHECKING:
    from .verifier import Verdict

REPORT_FORMAT = "ORPHANQUEUE-VERDICT-1"
SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "orphanqueue.verdict.schema.v1.json"


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def _verdict_name(err: Optional[OracleError]) -> str:
    if err is None:
        return "pass"
    if isinstance(err, DurabilityViolation):
        return "durability_violation"
    if isinstance(err, ProtocolViolation):
        return "protocol_violation"
    return "harness_error"


def build_report(
    crashed_dir: Union[str, Path],
    transcript: Union[str, Path],
    verdict: Optional["Verdict"],
    err: Optional[OracleError],
) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "format": REPORT_FORMAT,
        "created_at": int(time.time()),
        "crashed_dir": str(crashed_dir),
        "transcript": str(transcript),
        "ok": err is None,
        "verdict": _verdict_name(err),
        "reason_code": err.reason_code if err is not None else None,
        "message": str(err) if err is not None else None,
        "key": err.key if isinstance(err, ProtocolViolation) else None,
        "violations": list(err.keys) if isinstance(err, DurabilityViolation) else [],
        "lines_replayed": None,
        "dropped_fragment": None,
        "counts": None,
    }
    if verdict is not None:
        states = verdict.replay.states.values()
        out["lines_replayed"] = verdict.replay.lines_replayed
        out["dropped_fragment"] = verdict.replay.dropped_fragment
        out["counts"] = {
            "tracked": len(verdict.replay.states),
            "attempted_write": sum(1 for s in states if s.attempted_write),
            "confirmed_durable": sum(1 for s in states if s.confirmed_durable),
            "observed_afterward": sum(1 for s in states if s.observed_afterward),
            "recovered": len(verdict.recovered),
        }
    return out


def validate_report(obj: Dict[str, Any]) -> None:
    try:
        _validator().validate(obj)
    except jsonschema.ValidationError as e:
        raise HarnessError(f"verdict report does not match schema: {e.message}") from e


def write_report(path: Path, obj: Dict[str, Any]) -> None:
    validate_report(obj)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(obj, sort_keys=True, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        raise HarnessError(f"writing report {path} failed: {e}") from e
