"""Secret label to environment variable name normalization."""

import re

_SEPARATORS = re.compile(r"[ -]")
_DISALLOWED = re.compile(r"[^A-Za-z0-9_]")


def normalize_env_var_name(prefix: str, label: str) -> str:
    """Turn a secret label into an environment variable name.

    Spaces and hyphens become underscores, every other character outside
    ``[A-Za-z0-9_]`` is dropped and the result is uppercased. ``prefix`` is
    prepended as given.

    Args:
        prefix: Prefix for the variable name (may be empty)
        label: Secret label, field label or file name

    Returns:
        Environment variable name

    Example:
        >>> normalize_env_var_name("APP_", "connection string")
        'APP_CONNECTION_STRING'
        >>> normalize_env_var_name("", "api-key.v2!@#")
        'API_KEYV2'
    """
    name = _SEPARATORS.sub("_", label)
    name = _DISALLOWED.sub("", name)
    return f"{prefix}{name.upper()}"
