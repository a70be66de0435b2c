import secrets

import bcrypt

DIGITS = "0123456789"


def generate_otp_code(length: int = 6) -> str:
    if length < 1:
        raise ValueError("OTP length must be positive")
    return "".join(secrets.choice(DIGITS) for _ in range(length))


def hash_otp_code(code: str, rounds: int = 10) -> str:
    if not isinstance(code, str) or len(code) == 0:
        raise ValueError("OTP code must be a non-empty string")

    # bcrypt expects bytes
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(code.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_otp_code(code: str, code_hash: str) -> bool:
    if not code or not code_hash:
        return False
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False
