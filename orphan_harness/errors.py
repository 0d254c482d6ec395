from typing import List


class OracleError(Exception):
    reason_code = "oracle_error"
    exit_code = 2


class HarnessError(OracleError):
    """The harness itself is broken; not a finding about the queue."""
    reason_code = "harness_error"


class ConfigError(HarnessError):
    reason_code = "invalid_config"


class QueueError(HarnessError):
    reason_code = "queue_error"


class QueueEmpty(QueueError):
    reason_code = "queue_empty"


class ItemDecodeError(HarnessError):
    reason_code = "item_decode"


class TranscriptWriteError(HarnessError):
    reason_code = "transcript_write"


class TranscriptParseError(HarnessError):
    reason_code = "malformed_line"

    def __init__(self, line_no: int, line: str):
        super().__init__(f"invalid output line {line_no}: {line!r}")
        self.line_no = line_no
        self.line = line


class ProtocolViolation(OracleError):
    reason_code = "protocol_violation"
    exit_code = 3

    def __init__(self, key: int, message: str):
        super().__init__(message)
        self.key = key


class KeyCollision(ProtocolViolation):
    reason_code = "key_collision"


class ObservedBeforeWritten(ProtocolViolation):
    reason_code = "observed_before_written"


class WritelessRecovery(ProtocolViolation):
    reason_code = "writeless_recovery"


class DurabilityViolation(OracleError):
    reason_code = "durability_violation"
    exit_code = 1

    def __init__(self, keys: List[int]):
        keys = sorted(keys)
        if len(keys) == 1:
            msg = f"ID {keys[0]} was not durable"
        else:
            msg = f"IDs {', '.join(str(k) for k in keys)} were not durable"
        super().__init__(msg)
        self.keys = keys


def describe(e: OracleError) -> str:
    return f"ERROR: {e.reason_code}: {e}"
