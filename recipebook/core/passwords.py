from pwdlib import PasswordHash

# Argon2 via pwdlib's recommended settings
_password_hash = PasswordHash.recommended()


def hash_password(password: str) -> str:
    return _password_hash.hash(password)


def verify_password(password: str, digest: str) -> bool:
    return _password_hash.verify(password, digest)
