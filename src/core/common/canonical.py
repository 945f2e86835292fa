import json
from typing import Any


def canonical_json(payload: Any) -> str:
    """Key-sorted, whitespace-free JSON; identical payloads encode to identical bytes."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
