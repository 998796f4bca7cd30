"""
Issue a signed .license file.

Usage:
    python -m scripts.generate_license keys
    python -m scripts.generate_license issue --secret-key <base64> --license-id ACME-001 --seats 25 --days 365
"""
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fieldtracker.licensing import LicenseData, generate_key_pair, generate_license_file, sign_license
from fieldtracker.sync.timeutils import utcnow


def issue(license_id: str, seats: int, days, issuer: str, secret_key: str, output: Path) -> None:
    now = utcnow()
    data = LicenseData(
        license_id=license_id,
        seats_max=seats,
        expiry_updates=now + timedelta(days=days) if days else None,
        issued_at=now,
        issuer=issuer,
    )
    output.write_text(generate_license_file(sign_license(data, secret_key)), encoding="utf-8")
    print(f"Wrote {output} ({seats} seats, {'expires in %d days' % days if days else 'no expiry'})")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Generate issuer keys or sign a license')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('keys', help='Print a new issuer key pair')

    issue_parser = sub.add_parser('issue', help='Sign a new license file')
    issue_parser.add_argument('--secret-key', required=True, help='Base64 issuer secret key')
    issue_parser.add_argument('--license-id', required=True)
    issue_parser.add_argument('--seats', type=int, required=True)
    issue_parser.add_argument('--days', type=int, default=None, help='Days until update expiry (omit for none)')
    issue_parser.add_argument('--issuer', default='Field Tracker')
    issue_parser.add_argument('--output', type=Path, default=Path('fieldtracker.license'))

    args = parser.parse_args()

    if args.command == 'keys':
        public_key, secret_key = generate_key_pair()
        print(f"LICENSE_PUBLIC_KEY={public_key}")
        print(f"Secret key (keep offline): {secret_key}")
    else:
        issue(args.license_id, args.seats, args.days, args.issuer, args.secret_key, args.output)
