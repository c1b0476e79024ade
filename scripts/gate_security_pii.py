#!/usr/bin/env python3
"""Gate G2: no raw payment data in logs.

Fails if, anywhere under src/:
- print( is used in runtime code
- a logger call mentions a payment-sensitive name (raw message, sender
  account, payment reference) without going through safe_log_context,
  mask_identifier or redact_value on the same line

Usage:
    python scripts/gate_security_pii.py [SRC_DIR]
"""

import re
import sys
from pathlib import Path

SENSITIVE_NAMES = (
    "raw",
    "payload",
    "request.body",
    "sender_account",
    "senderaccountnumber",
    "payment_reference",
    "paymentreference",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")
LOGGER_CALL_PATTERN = re.compile(r"logger\.(debug|info|warning|error|critical|exception)\s*\(")

REDACTION_CALLS = ("safe_log_context", "mask_identifier", "redact_value", "redact_string")


def _code_part(line: str) -> str:
    return line.split("#", 1)[0]


def check_file(filepath: Path) -> list[str]:
    """Violations in one file, as "path:line: message" strings."""
    try:
        lines = filepath.read_text(encoding="utf-8").splitlines()
    except UnicodeDecodeError:
        return []

    errors = []
    for lineno, line in enumerate(lines, start=1):
        code = _code_part(line)
        if not code.strip():
            continue

        if PRINT_PATTERN.search(code):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if LOGGER_CALL_PATTERN.search(code):
            lowered = code.lower()
            hits = [name for name in SENSITIVE_NAMES if re.search(rf"\b{re.escape(name)}\b", lowered)]
            if hits and not any(call in code for call in REDACTION_CALLS):
                errors.append(
                    f"{filepath}:{lineno}: logger call with '{hits[0]}' "
                    "must go through safe_log_context/mask_identifier"
                )
    return errors


def check_tree(src_dir: Path) -> list[str]:
    errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        errors.extend(check_file(pyfile))
    return errors


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    src_dir = Path(args[0]) if args else Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write(f"Error: {src_dir} not found\n")
        return 1

    errors = check_tree(src_dir)
    if errors:
        sys.stderr.write("Gate G2 FAILED - payment data may reach logs:\n")
        for err in errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - no payment data in logs\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
