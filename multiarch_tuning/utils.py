"""
Common utilities shared across the operator
"""

# Standard
from typing import Any
import pathlib

# First Party
import alog

# Local
from . import config, constants

log = alog.use_channel("UTILS")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

# Namespace file mounted into every pod with a service account
SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"

## Dicts #######################################################################


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            Value returned when the key (or an intermediate dict) is missing

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            Intermediate values that are None count as missing.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(f"Intermediate key {part} is not a dict")
    return dct.get(parts[-1], dflt)


## Identity ####################################################################


def get_operator_namespace() -> str:
    """Get the namespace the operator runs in. The configured value wins,
    otherwise the service account namespace file is used.
    """
    if config.operator_namespace:
        return config.operator_namespace
    namespace_file = pathlib.Path(SERVICE_ACCOUNT_NAMESPACE_FILE)
    if namespace_file.is_file():
        return namespace_file.read_text(encoding="utf-8").strip()
    log.warning("Unable to detect the operator namespace, using 'default'")
    return "default"
