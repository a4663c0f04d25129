"""Common error and validation utility functions
"""


def check_for_missing_env_vars(env_vars: dict):
    """Checks whether any required environment values are undefined.

    :param env_vars: The dictionary of environment variables.
    """
    # Missing RPC or database settings are unrecoverable.
    missing_keys = [k for k, v in env_vars.items() if v is None or v == ""]
    if missing_keys:
        missing_keys_str = ", ".join(missing_keys)
        raise EnvironmentError(
            f"Missing required environment variables: {missing_keys_str}"
        )


def get_bool_env_value(val, default: bool = False) -> bool:
    """
    Interpret an environment variable value as a bool.

    :param val: The raw value, possibly None.
    :param default: The value returned if val is None.
    :return: The interpreted value.
    """
    if val is None:
        return default
    return str(val).strip().lower() in ["true", "1", "t", "y", "yes"]
