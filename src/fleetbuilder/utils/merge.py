import logging
from typing import Dict, Any, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


def normalize_to_dict(data: Union[Dict, List, None], sep: str = "=") -> Dict[str, Any]:
    """
    Normalizes a dictionary or a list of "KEY=VALUE" strings into a dictionary.
    Returns an empty dict if data is None.
    """
    if not data:
        return {}
    if isinstance(data, dict):
        return dict(data)
    if isinstance(data, (list, tuple)):
        normalized_dict = {}
        for item in data:
            if not isinstance(item, str):
                logger.warning(
                    f"Skipping non-string item in list intended for dict normalization: {item}"
                )
                continue
            parts = item.split(sep, 1)
            if len(parts) == 2:
                normalized_dict[parts[0]] = parts[1]
            else:
                # Format 'VAR' means value from shell, represented as None in YAML.
                normalized_dict[parts[0]] = None
        return normalized_dict

    raise TypeError(
        f"Data of type {type(data).__name__} cannot be normalized to a dictionary."
    )


def parse_key_values(items: Optional[Iterable[str]], sep: str = "=") -> Dict[str, str]:
    """
    Parses repeated CLI values like `KEY=VALUE` into an ordered dict.

    Raises ValueError naming the first item without a separator.
    """
    parsed: Dict[str, str] = {}
    for item in items or ():
        if sep not in item:
            raise ValueError(f"'{item}' is not in KEY{sep}VALUE form")
        key, value = item.split(sep, 1)
        parsed[key.strip()] = value
    return parsed


def merge_layers(layers: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Flattens settings layers into one mapping, later layers win.

    A key left empty (None) in a later layer keeps the earlier value.
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if value is None and key in merged:
                continue
            merged[key] = value
    return merged
