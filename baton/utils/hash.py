"""Utility functions for computing stable hashes from task definitions."""

from collections.abc import Iterable, Mapping
import hashlib
import json
from typing import Any


def compute_stable_hash(data: Mapping[str, Any]) -> str:
    hash_string = json.dumps(data, sort_keys=True)
    return hashlib.sha256(hash_string.encode("utf-8")).hexdigest()


def task_fingerprint(definition: Mapping[str, Any]) -> str:
    return compute_stable_hash(definition)


def graph_fingerprint(definitions: Iterable[Mapping[str, Any]]) -> str:
    hash_data = {"tasks": sorted((dict(definition) for definition in definitions), key=lambda item: item["name"])}
    return compute_stable_hash(hash_data)
