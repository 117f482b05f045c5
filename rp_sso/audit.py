"""
rp_sso/audit.py

Tamper-evident SSO audit log.

We append one JSON object per line (JSONL). Each event is hash-chained:

  H_0 = "0"*64
  H_n = SHA3-256( bytes.fromhex(H_{n-1}) || canonical_json(event_without_hash_fields) )

Each line stores:
  - prev_hash: hex string (64 chars)
  - hash:      hex string (64 chars)

Properties:
- Any modification, deletion, or reordering of log lines breaks the chain.
- Chain state is persisted in <AUDIT_DIR>/sso_audit.state
- Uses file locking (flock) to keep chain consistent under concurrency.
- The shared secret, raw payloads and raw signatures are never written;
  payload/signature appear only as length + SHA3-256.
"""

from __future__ import annotations

import json
import os
import time
import hashlib
from pathlib import Path
from typing import Any, Dict, Optional

# Linux file lock (works in Docker/Linux)
import fcntl

from .config import settings


# -----------------------------------------------------------------------------
# Paths
# -----------------------------------------------------------------------------
AUDIT_DIR: Path = settings.AUDIT_DIR
LOG_NAME = "sso_audit.jsonl"
STATE_NAME = "sso_audit.state"
LOCK_NAME = "sso_audit.lock"

GENESIS_HASH = "0" * 64  # 32 bytes hex


def audit_log_path() -> Path:
    return AUDIT_DIR / LOG_NAME


def audit_state_path() -> Path:
    return AUDIT_DIR / STATE_NAME


def _audit_lock_path() -> Path:
    return AUDIT_DIR / LOCK_NAME


# -----------------------------------------------------------------------------
# Canonical JSON
# -----------------------------------------------------------------------------
def _canonical_json_bytes(obj: Dict[str, Any]) -> bytes:
    """
    Produce deterministic JSON bytes for hashing and logging:
    - sorted keys
    - no whitespace
    - UTF-8
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _sha3_256_hex(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def chain_hash(prev_hash: str, event: Dict[str, Any]) -> str:
    """Next chain link for `event` (hash fields must already be stripped)."""
    return _sha3_256_hex(bytes.fromhex(prev_hash) + _canonical_json_bytes(event))


def _read_last_hash_unlocked() -> str:
    """
    Read last hash from the state file. Caller must hold lock.
    Returns GENESIS_HASH if state missing/empty.
    """
    state = audit_state_path()
    if not state.exists():
        return GENESIS_HASH

    s = state.read_text(encoding="utf-8").strip().lower()
    if len(s) != 64:
        return GENESIS_HASH
    try:
        bytes.fromhex(s)
    except ValueError:
        return GENESIS_HASH
    return s


def _write_last_hash_unlocked(h: str) -> None:
    audit_state_path().write_text(h + "\n", encoding="utf-8")


# -----------------------------------------------------------------------------
# Public helpers used by main.py
# -----------------------------------------------------------------------------
def build_common(
    *,
    flow: Optional[str] = None,
    nonce: Optional[str] = None,
    return_url: Optional[str] = None,
    payload: Optional[str] = None,
    signature: Optional[str] = None,
    request_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build common audit fields. Keep this "boring" and stable.

    Payload and signature are recorded by length and hash only, so a log
    reader can correlate repeated submissions without being able to replay them.
    """
    out: Dict[str, Any] = {"ts": int(time.time())}

    if flow:
        out["flow"] = flow
    if nonce:
        out["nonce"] = nonce
    if return_url:
        out["return_url"] = return_url[:500]
    if request_ip:
        out["request_ip"] = request_ip
    if user_agent:
        out["user_agent"] = user_agent[:200]

    if payload is not None:
        raw = payload.encode("utf-8", errors="replace")
        out["payload_len"] = len(raw)
        out["payload_sha3_256"] = _sha3_256_hex(raw)

    if signature is not None:
        raw = signature.encode("utf-8", errors="replace")
        out["signature_len"] = len(raw)
        out["signature_sha3_256"] = _sha3_256_hex(raw)

    return out


def append_event(event: Dict[str, Any]) -> Optional[str]:
    """
    Append one event to the audit log with hash chaining.

    Returns the new chain head, or None when auditing is switched off.
    """
    if not settings.AUDIT_ENABLED:
        return None

    AUDIT_DIR.mkdir(parents=True, exist_ok=True)

    # We lock a dedicated lock file so it works even if log/state don't exist yet.
    with open(_audit_lock_path(), "a+", encoding="utf-8") as lockf:
        fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
        try:
            prev_hash = _read_last_hash_unlocked()

            # Never allow callers to inject their own chain fields.
            e = dict(event)
            e.pop("prev_hash", None)
            e.pop("hash", None)

            next_hash = chain_hash(prev_hash, e)

            stored = dict(e)
            stored["prev_hash"] = prev_hash
            stored["hash"] = next_hash

            with open(audit_log_path(), "ab") as f:
                f.write(_canonical_json_bytes(stored) + b"\n")
                f.flush()
                os.fsync(f.fileno())

            _write_last_hash_unlocked(next_hash)
        finally:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

    return next_hash


# -----------------------------------------------------------------------------
# Verification
# -----------------------------------------------------------------------------
def verify_log_chain(path: Optional[Path] = None) -> bool:
    """
    Verify the hash chain of an audit log file.
    Returns True if valid (or absent), False otherwise.
    """
    path = path or audit_log_path()
    if not path.exists():
        return True

    prev = GENESIS_HASH
    with open(path, "rb") as f:
        for raw_line in f:
            raw_line = raw_line.strip()
            if not raw_line:
                continue
            try:
                obj = json.loads(raw_line.decode("utf-8"))
            except ValueError:
                return False
            if not isinstance(obj, dict):
                return False

            if obj.get("prev_hash") != prev:
                return False

            line_hash = obj.get("hash")
            obj.pop("prev_hash", None)
            obj.pop("hash", None)

            if chain_hash(prev, obj) != line_hash:
                return False

            prev = line_hash

    return True
