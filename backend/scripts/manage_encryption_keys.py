"""
Encryption Key Management Script

Generates, validates and rotates the keys protecting stored OAuth tokens.

Usage:
    # Print a new base64 256-bit key
    python -m scripts.manage_encryption_keys generate

    # Check ENCRYPTION_KEY_CURRENT / ENCRYPTION_KEY_PREVIOUS
    python -m scripts.manage_encryption_keys validate

    # Re-encrypt every stored credential under ENCRYPTION_KEY_CURRENT
    python -m scripts.manage_encryption_keys rotate [--dry-run]

Rotation procedure:
    1. Set ENCRYPTION_KEY_PREVIOUS to the old ENCRYPTION_KEY_CURRENT
    2. Set ENCRYPTION_KEY_CURRENT to the output of `generate`
    3. Deploy, then run `rotate`
    4. Unset ENCRYPTION_KEY_PREVIOUS once `rotate` reports no failures

Environment variables:
    DATABASE_URL: connection string for the credential store (rotate only)
    ENCRYPTION_KEY_CURRENT, ENCRYPTION_KEY_PREVIOUS
"""

import sys
import argparse
import logging
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from src.credentials.encryption import CredentialCipher, validate_encryption_ready
from src.credentials.errors import EncryptionKeyError
from src.credentials.redaction import setup_credential_logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def cmd_generate(args) -> int:
    # The key goes to stdout only, never to the log
    print(CredentialCipher.generate_key())
    return 0


def cmd_validate(args) -> int:
    try:
        validate_encryption_ready()
    except EncryptionKeyError as e:
        logger.error("Encryption keys invalid: %s", e)
        return 1
    logger.info("Encryption keys valid")
    return 0


def cmd_rotate(args) -> int:
    from src.credentials.rotation import rotate_encryption
    from src.credentials.store import CredentialStore
    from src.database.session import get_session_factory

    try:
        validate_encryption_ready()
    except EncryptionKeyError as e:
        logger.error("Encryption keys invalid: %s", e)
        return 1

    session = get_session_factory()()
    try:
        stats = rotate_encryption(
            CredentialStore(session),
            CredentialCipher(),
            dry_run=args.dry_run,
        )
    finally:
        session.close()

    logger.info(
        "%sRe-encryption summary: total=%d reencrypted=%d already_current=%d failed=%d",
        "[DRY RUN] " if args.dry_run else "",
        stats.total,
        stats.reencrypted,
        stats.already_current,
        stats.failed,
    )
    if stats.failed:
        logger.error(
            "Some credentials could not be decrypted with either key: %s",
            ", ".join(stats.failed_credential_ids),
        )
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage encryption keys for stored OAuth credentials"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Print a new base64 256-bit key")
    generate.set_defaults(func=cmd_generate)

    validate = subparsers.add_parser("validate", help="Validate configured keys")
    validate.set_defaults(func=cmd_validate)

    rotate = subparsers.add_parser(
        "rotate", help="Re-encrypt stored credentials under the current key"
    )
    rotate.add_argument(
        "--dry-run",
        action="store_true",
        help="Count credentials that need re-encryption without writing"
    )
    rotate.set_defaults(func=cmd_rotate)

    return parser


def main(argv=None) -> int:
    setup_credential_logging()
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
