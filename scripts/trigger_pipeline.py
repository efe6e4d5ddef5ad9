#!/usr/bin/env python3
"""
Dev helper: trigger the HMLR pipeline endpoints on a running backend.

Usage
-----
# Run one inbox cycle (pairs are processed inline)
python scripts/trigger_pipeline.py check

# Drain queued pair declarations
python scripts/trigger_pipeline.py process-pending

# Send a company landlord batch from a JSON file
python scripts/trigger_pipeline.py batch --file batch.json

# Build the batch request without sending it
python scripts/trigger_pipeline.py batch --file batch.json --dry-run

Environment / .env
------------------
FUNCTION_KEY   Key sent in the X-Function-Key header (required unless
               --key is given).
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv

_ENDPOINTS = {
    "check": "/api/inbox/check",
    "process-pending": "/api/responses/process-pending",
    "batch": "/api/batches/company",
}

_SAMPLE_BATCH = {
    "batchId": "a0B000000000001",
    "batchName": "LRC-0001",
    "records": [
        {
            "recordId": "a0C000000000001",
            "customerRef": "LL-1001",
            "companyName": "Acme Property Holdings Limited",
            "address1": "1 High Street",
            "address3": "Leeds",
            "postcode": "LS1 1AA",
        }
    ],
}


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status < 300 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="trigger_pipeline.py",
        description="Trigger HMLR pipeline endpoints on the backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/trigger_pipeline.py check
              python scripts/trigger_pipeline.py process-pending --url http://localhost:8001
              python scripts/trigger_pipeline.py batch --file batch.json
        """),
    )
    parser.add_argument("command", choices=list(_ENDPOINTS))
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--file",
        default=None,
        metavar="PATH",
        help="Batch JSON for the batch command. A one-record sample is used if omitted.",
    )
    parser.add_argument("--key", default=None, help="Override FUNCTION_KEY.")
    parser.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Request timeout in seconds (default: 300; inline checks can be slow)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the request without sending it.",
    )
    args = parser.parse_args()

    key = args.key or os.getenv("FUNCTION_KEY", "")
    if not key and not args.dry_run:
        print(
            "ERROR: No function key found.\n"
            "Set FUNCTION_KEY in your environment or .env file, or pass --key.",
            file=sys.stderr,
        )
        return 1

    payload = None
    if args.command == "batch":
        if args.file:
            file_path = Path(args.file)
            if not file_path.exists():
                print(f"ERROR: File not found: {file_path}", file=sys.stderr)
                return 1
            payload = json.loads(file_path.read_text())
        else:
            payload = _SAMPLE_BATCH
            print("No --file specified; using a one-record sample batch")

    endpoint = f"{args.url.rstrip('/')}{_ENDPOINTS[args.command]}"
    print(f"Endpoint  : {endpoint}")

    if args.dry_run:
        if payload is not None:
            print("\n[DRY RUN] Payload:")
            print(json.dumps(payload, indent=2))
        return 0

    try:
        response = httpx.post(
            endpoint,
            json=payload,
            headers={"X-Function-Key": key},
            timeout=args.timeout,
        )
    except httpx.HTTPError as e:
        print(f"ERROR: Request failed: {e}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code < 300 else 1


if __name__ == "__main__":
    sys.exit(main())
