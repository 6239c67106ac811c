"""Command line client for the x402 Swarm storage API.

Usage:
    x402-swarm pricing
    x402-swarm prepare <duration> [--payment HEADER]
    x402-swarm upload <token> <file> [<file> ...]
    x402-swarm test <duration> <file> [--payment HEADER]

The server URL is read from ``API_URL`` (default ``http://localhost:4021``).
Payment payloads are produced by an x402 wallet client and passed verbatim
with ``--payment``; without one, the payment requirements are printed.
"""

from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
import time
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

DEFAULT_API_URL = "http://localhost:4021"
HTTP_PAYMENT_REQUIRED = 402
REQUEST_TIMEOUT_SECONDS = 300.0


class CliError(RuntimeError):
    """Raised when a command cannot complete."""


def _print_payment_required(response: httpx.Response) -> None:
    print("Payment required:")
    try:
        body = response.json()
    except ValueError:
        print(response.text)
        return
    for requirement in body.get("accepts", []):
        print(f"  Network: {requirement.get('network')}")
        print(f"  Amount: {requirement.get('amount')} {requirement.get('asset')}")
        print(f"  Pay To: {requirement.get('payTo')}")


def pricing(client: httpx.Client) -> dict[str, Any]:
    response = client.get("/pricing")
    response.raise_for_status()
    data: dict[str, Any] = response.json()
    print("Pricing tiers:")
    for tier in data["tiers"]:
        print(f"  {tier['tier']:>4}  ${tier['price']:<6} {tier['duration']}")
    print(f"Max total size: {data['maxTotalSize']}")
    print(f"Server wallet: {data['serverWallet']}")
    return data


def prepare(client: httpx.Client, duration: str, payment: str | None = None) -> dict[str, Any]:
    print(f"\nPreparing upload for {duration}...")
    headers = {"PAYMENT-SIGNATURE": payment} if payment else {}
    response = client.post("/prepare", params={"duration": duration}, headers=headers)

    if response.status_code == HTTP_PAYMENT_REQUIRED:
        _print_payment_required(response)
        raise CliError("Prepare needs a payment; pass one with --payment")
    if response.is_error:
        raise CliError(f"Prepare failed: {response.text}")

    data: dict[str, Any] = response.json()
    print("Prepare successful!")
    print(f"  Upload token: {data['uploadToken']}")
    print(f"  Ready at: {data['readyAt']}")
    print(f"  Expires at: {data['expiresAt']}")
    return data


def upload(client: httpx.Client, upload_token: str, paths: Sequence[Path]) -> dict[str, Any]:
    files = []
    for path in paths:
        print(f"\nUploading {path}...")
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        files.append(("files", (path.name, path.read_bytes(), content_type)))

    response = client.post("/upload", data={"uploadToken": upload_token}, files=files)
    if response.is_error:
        raise CliError(f"Upload failed: {response.text}")

    data: dict[str, Any] = response.json()
    print("Upload successful!")
    print(f"  URL: {data['url']}")
    print(f"  Reference: {data['reference']}")
    print(f"  CID: {data['cid']}")
    print(f"  Expires at: {data['expiresAt']}")
    return data


def _seconds_until(iso_timestamp: str) -> float:
    ready_at = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    return max(0.0, (ready_at - datetime.now(UTC)).total_seconds())


def full_test(
    client: httpx.Client, duration: str, path: Path, payment: str | None = None
) -> dict[str, Any]:
    prepared = prepare(client, duration, payment)

    wait_seconds = _seconds_until(prepared["readyAt"])
    if wait_seconds > 0:
        print(f"\nWaiting {int(wait_seconds) + 1}s for stamp propagation...")
        time.sleep(wait_seconds)

    return upload(client, prepared["uploadToken"], [path])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="x402-swarm", description="x402 Swarm storage client")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("API_URL", DEFAULT_API_URL),
        help="Server URL (default: $API_URL or %(default)s)",
    )
    parser.add_argument("--json", action="store_true", help="Print the raw JSON result")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("pricing", help="Show pricing tiers")

    prepare_cmd = commands.add_parser("prepare", help="Prepare upload (2d, 7d, 30d)")
    prepare_cmd.add_argument("duration", nargs="?", default="2d")
    prepare_cmd.add_argument("--payment", help="x402 payment payload header value")

    upload_cmd = commands.add_parser("upload", help="Upload files with a token")
    upload_cmd.add_argument("token")
    upload_cmd.add_argument("files", nargs="+", type=Path)

    test_cmd = commands.add_parser("test", help="Prepare, wait for propagation, upload")
    test_cmd.add_argument("duration", nargs="?", default="2d")
    test_cmd.add_argument("file", nargs="?", type=Path, default=Path("README.md"))
    test_cmd.add_argument("--payment", help="x402 payment payload header value")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    print(f"Using API_URL: {args.api_url}")

    with httpx.Client(base_url=args.api_url, timeout=REQUEST_TIMEOUT_SECONDS) as client:
        try:
            if args.command == "pricing":
                result = pricing(client)
            elif args.command == "prepare":
                result = prepare(client, args.duration, args.payment)
            elif args.command == "upload":
                result = upload(client, args.token, args.files)
            else:
                result = full_test(client, args.duration, args.file, args.payment)
        except (CliError, httpx.HTTPError, OSError) as err:
            print(str(err), file=sys.stderr)
            return 1

    if args.json:
        print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
