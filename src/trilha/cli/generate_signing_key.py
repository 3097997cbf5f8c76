"""Print a fresh signing key for audit log integrity tokens.

Usage:
    python -m trilha.cli.generate_signing_key

The key is 32 random bytes, urlsafe base64 encoded, which is the minimum
length PyJWT accepts for HS256 without warnings.
"""

from cryptography.fernet import Fernet


def generate_signing_key() -> str:
    return Fernet.generate_key().decode()


def main():
    key = generate_signing_key()

    print(f"AUDIT_SIGNING_KEY={key}")
    print()
    print("Rotating this key invalidates verification of every log signed with the old one.")
    print("Keep the previous key available wherever historical logs must still be verified.")


if __name__ == "__main__":
    main()
