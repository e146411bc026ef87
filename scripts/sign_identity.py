#!/usr/bin/env python3
"""
Produce the volunteer identity headers the auth gateway would send.

Useful for calling volunteer endpoints by hand against a server that has
IDENTITY_SIGNING_SECRET configured.

Usage:
    python scripts/sign_identity.py vol-42 LEGAL
    python scripts/sign_identity.py vol-42 LEGAL --curl /volunteers/me/dispatches

Environment:
    IDENTITY_SIGNING_SECRET: shared gateway secret (required)
"""
import argparse
import os
import sys

from caredispatch.transport.security import (
    IDENTITY_SIGNATURE_HEADER,
    VOLUNTEER_CATEGORY_HEADER,
    VOLUNTEER_ID_HEADER,
    compute_identity_signature,
)


def main():
    parser = argparse.ArgumentParser(
        description="Sign volunteer identity headers with HMAC-SHA256",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("volunteer_id")
    parser.add_argument("category", choices=["LEGAL", "POLICE", "MENTAL"], type=str.upper)
    parser.add_argument("--curl", "-c", metavar="PATH", help="Print a curl command for PATH")
    parser.add_argument("--host", "-H", default="http://localhost:8000", help="Host URL for curl")
    parser.add_argument("--secret", "-s", help="Signing secret (or use IDENTITY_SIGNING_SECRET)")

    args = parser.parse_args()

    secret = args.secret or os.environ.get("IDENTITY_SIGNING_SECRET")
    if not secret:
        print("Error: IDENTITY_SIGNING_SECRET environment variable not set", file=sys.stderr)
        sys.exit(1)

    signature = compute_identity_signature(secret, args.volunteer_id, args.category)
    headers = {
        VOLUNTEER_ID_HEADER: args.volunteer_id,
        VOLUNTEER_CATEGORY_HEADER: args.category,
        IDENTITY_SIGNATURE_HEADER: signature,
    }

    if args.curl:
        flags = " ".join(f'-H "{k}: {v}"' for k, v in headers.items())
        print(f"curl {flags} {args.host}{args.curl}")
    else:
        for k, v in headers.items():
            print(f"{k}: {v}")


if __name__ == "__main__":
    main()
