#!/usr/bin/env python3
"""
verify_audit.py — Verify the tamper-evident SSO audit log (JSONL).

Checks:
- every line is a JSON object
- hash chaining ("prev_hash" -> "hash") using the same scheme audit.py writes
- optional state file holds the last hash of the chain

Exit codes:
- 0: OK
- 1: Verification failed

Usage:
    python -m rp_sso.verify_audit audit/sso_audit.jsonl --state audit/sso_audit.state
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from .audit import GENESIS_HASH, chain_hash


@dataclass
class VerifyResult:
    ok: bool
    lines: int
    chained_lines: int
    last_hash: Optional[str]
    message: str


def _is_hex64(s: Any) -> bool:
    if not isinstance(s, str) or len(s) != 64:
        return False
    try:
        int(s, 16)
        return True
    except ValueError:
        return False


def _iter_jsonl(path: Path) -> Iterable[Tuple[int, Dict[str, Any]]]:
    """
    Yields: (line_number starting at 1, parsed_object)
    """
    with path.open("r", encoding="utf-8") as f:
        for idx, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError as e:
                raise ValueError(f"{path}:{idx}: invalid JSON: {e}") from e
            if not isinstance(obj, dict):
                raise ValueError(f"{path}:{idx}: JSON root must be object/dict")
            yield idx, obj


def verify_audit(
    jsonl_path: Path,
    state_path: Optional[Path] = None,
    *,
    strict_chain: bool = False,
) -> VerifyResult:
    """
    Walk the log once and report the first problem found.

    Lines without chain fields are tolerated unless `strict_chain` is set.
    Raises ValueError for lines that are not JSON objects.
    """
    if not jsonl_path.exists():
        return VerifyResult(False, 0, 0, None, f"Log not found: {jsonl_path}")

    lines = 0
    chained_lines = 0
    last_hash: Optional[str] = None

    def fail(msg: str) -> VerifyResult:
        return VerifyResult(False, lines, chained_lines, last_hash, msg)

    for lineno, event in _iter_jsonl(jsonl_path):
        lines += 1

        has_chain_fields = ("hash" in event) or ("prev_hash" in event)
        if not has_chain_fields:
            if strict_chain:
                return fail(f"{jsonl_path}:{lineno}: missing chain fields (hash/prev_hash) in strict mode")
            continue

        if "hash" not in event or "prev_hash" not in event:
            return fail(f"{jsonl_path}:{lineno}: chain requires both 'prev_hash' and 'hash'")

        prev_claimed = event.pop("prev_hash")
        hash_claimed = event.pop("hash")

        if not _is_hex64(prev_claimed):
            return fail(f"{jsonl_path}:{lineno}: prev_hash is not 64-hex")
        if not _is_hex64(hash_claimed):
            return fail(f"{jsonl_path}:{lineno}: hash is not 64-hex")

        expected_prev = last_hash if last_hash is not None else GENESIS_HASH
        if prev_claimed != expected_prev:
            return fail(f"{jsonl_path}:{lineno}: prev_hash mismatch: expected {expected_prev} got {prev_claimed}")

        recomputed = chain_hash(prev_claimed, event)
        if hash_claimed != recomputed:
            return fail(f"{jsonl_path}:{lineno}: hash mismatch: expected {recomputed} got {hash_claimed}")

        chained_lines += 1
        last_hash = hash_claimed

    if state_path is not None:
        if not state_path.exists():
            return fail(f"State file not found: {state_path}")

        state_val = state_path.read_text(encoding="utf-8").strip()
        if state_val and not _is_hex64(state_val):
            return fail(f"State file value is not 64-hex: {state_path}")

        if chained_lines > 0 and state_val != last_hash:
            return fail(f"State mismatch: state={state_val} log_last={last_hash}")
        if chained_lines == 0 and strict_chain:
            return fail("State file provided but log contains no chaining fields")

    return VerifyResult(True, lines, chained_lines, last_hash, "OK")


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        description="Verify SSO audit log integrity (JSONL hash chain)."
    )
    p.add_argument(
        "log",
        type=Path,
        help="Path to audit JSONL file (e.g. audit/sso_audit.jsonl)",
    )
    p.add_argument(
        "--state",
        type=Path,
        default=None,
        help="Optional state file containing last hash (e.g. audit/sso_audit.state)",
    )
    p.add_argument(
        "--strict-chain",
        action="store_true",
        help="Fail if log entries do not contain hash chaining fields.",
    )
    args = p.parse_args(argv)

    try:
        res = verify_audit(args.log, state_path=args.state, strict_chain=args.strict_chain)
    except ValueError as e:
        print(f"FAIL: {e}", file=sys.stderr)
        return 1

    out = sys.stdout if res.ok else sys.stderr
    if res.ok:
        print("OK", file=out)
    else:
        print("FAIL", file=out)
        print(res.message, file=out)
    print(f"lines={res.lines}", file=out)
    print(f"chained_lines={res.chained_lines}", file=out)
    if res.last_hash:
        print(f"last_hash={res.last_hash}", file=out)
    return 0 if res.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
