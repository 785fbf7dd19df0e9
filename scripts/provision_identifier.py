#!/usr/bin/env python3
"""
Identifier provisioning script for payrail.

Seals an identifier artifact under the newest resolver secret and writes it
to the configured artifact store.  This is the out-of-band write path; the
service itself only ever reads artifacts.

Usage:
    python scripts/provision_identifier.py alice example.com <pubkey-hex> [--max-sendable MSAT]
"""
import argparse
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from payrail.audit_logger import get_audit_logger
from payrail.config import get_config
from payrail.factory import build_artifact_store
from payrail.resolver import IdentifierResolver


def main(argv=None):
    """Seal and store one artifact."""
    parser = argparse.ArgumentParser(description="Provision a name@domain -> pubkey artifact")
    parser.add_argument("name")
    parser.add_argument("domain")
    parser.add_argument("pubkey", help="33-byte compressed or 32-byte x-only public key, hex")
    parser.add_argument("--max-sendable", type=int, default=None, help="per-recipient cap in millisatoshi")
    args = parser.parse_args(argv)

    cfg = get_config()
    if not cfg["RESOLVER_SECRETS"]:
        print("❌ RESOLVER_SECRET or RESOLVER_SECRETS must be set")
        return 1
    if cfg["ARTIFACT_STORE"] == "memory":
        print("⚠️  ARTIFACT_STORE=memory - the artifact will not outlive this process")

    store = build_artifact_store(cfg)
    resolver = IdentifierResolver(store, cfg["RESOLVER_SECRETS"])

    try:
        store_key, artifact = resolver.seal_artifact(
            args.name, args.domain, args.pubkey, max_sendable=args.max_sendable
        )
        store.put(store_key, artifact.to_json())
    except Exception as e:
        print(f"\n❌ Error provisioning identifier: {e}")
        return 1

    get_audit_logger().log_event("artifact_provisioned", secret_version=resolver.versions[0])
    print(f"✅ Provisioned {artifact.name}@{artifact.domain} under secret version {resolver.versions[0]}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
