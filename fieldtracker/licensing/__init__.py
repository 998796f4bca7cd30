from fieldtracker.licensing.verifier import (
    LicenseData,
    LicenseFormatError,
    LicenseStatus,
    SignedLicense,
    canonical_payload,
    check_license_status,
    create_sample_license,
    generate_key_pair,
    generate_license_file,
    parse_license_file,
    sign_license,
    verify_license,
)

__all__ = [
    "LicenseData",
    "LicenseFormatError",
    "LicenseStatus",
    "SignedLicense",
    "canonical_payload",
    "check_license_status",
    "create_sample_license",
    "generate_key_pair",
    "generate_license_file",
    "parse_license_file",
    "sign_license",
    "verify_license",
]
