import secrets
import string

_NAME_CHARACTERS = string.ascii_lowercase + string.digits
_PASSWORD_SYMBOLS = "!@#$%^&*()-_=+"


def create_random_name(prefix: str, max_len: int = 30) -> str:
    """
    Returns prefix followed by random lowercase letters/digits, max_len characters in
    total. SQL server names must be globally unique, lowercase and at most 63
    characters, so this is good enough for every resource we create.
    """
    if len(prefix) >= max_len:
        raise ValueError(
            f"prefix {prefix} must be shorter than max_len {max_len} to leave room for "
            "random characters"
        )
    suffix = "".join(
        secrets.choice(_NAME_CHARACTERS) for _ in range(max_len - len(prefix))
    )
    return prefix + suffix


def create_password(length: int = 16) -> str:
    """
    Azure SQL administrator passwords must be at least 8 characters and contain
    characters from three of: uppercase, lowercase, digits, symbols. We always include
    all four.
    """
    if length < 8:
        raise ValueError(f"Password length must be at least 8, got {length}")

    required = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(_PASSWORD_SYMBOLS),
    ]
    alphabet = string.ascii_letters + string.digits + _PASSWORD_SYMBOLS
    rest = [secrets.choice(alphabet) for _ in range(length - len(required))]

    characters = required + rest
    secrets.SystemRandom().shuffle(characters)
    return "".join(characters)
