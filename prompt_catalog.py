"""Prompt catalog loading and weighted prompt drawing."""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path

logger = logging.getLogger(__name__)

POOL_NAMES = ("modifier", "situation", "content")

DEFAULT_CATALOG = {
    "version": "builtin",
    "modifier": [
        {"id": "m_builtin_1", "text": "The most suspicious "},
        {"id": "m_builtin_2", "text": "A painfully honest "},
    ],
    "situation": [
        {"id": "s_builtin_1", "text": "excuse for being late "},
        {"id": "s_builtin_2", "text": "toast at a wedding "},
    ],
    "content": [
        {"id": "c_builtin_1", "text": "from a robot"},
        {"id": "c_builtin_2", "text": "in exactly five words"},
    ],
}


class PromptCatalogError(Exception):
    pass


def validate_catalog(payload) -> dict:
    if not isinstance(payload, dict):
        raise PromptCatalogError("Prompt catalog must be a JSON object.")
    if not isinstance(payload.get("version"), str):
        raise PromptCatalogError("Prompt catalog is missing a version string.")

    catalog = {"version": payload["version"]}
    for pool in POOL_NAMES:
        items = payload.get(pool)
        if not isinstance(items, list) or not items:
            raise PromptCatalogError(f"Prompt pool '{pool}' must be a non-empty list.")
        cleaned = []
        for item in items:
            if not isinstance(item, dict):
                raise PromptCatalogError(f"Prompt pool '{pool}' has a non-object item.")
            if not isinstance(item.get("id"), str) or not isinstance(item.get("text"), str):
                raise PromptCatalogError(f"Prompt pool '{pool}' items need id and text.")
            weight = item.get("weight")
            if weight is not None and (
                isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight < 0
            ):
                raise PromptCatalogError(
                    f"Prompt '{item['id']}' has an invalid weight: {weight!r}."
                )
            cleaned.append(dict(item))
        catalog[pool] = cleaned
    return catalog


def load_prompt_catalog(path: str | Path) -> dict:
    catalog_path = Path(path)
    if not catalog_path.exists():
        logger.warning("Prompt catalog %s not found; using built-in prompts.", catalog_path)
        return validate_catalog(DEFAULT_CATALOG)

    try:
        payload = json.loads(catalog_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PromptCatalogError(f"Prompt catalog is not valid JSON: {exc}") from exc

    catalog = validate_catalog(payload)
    logger.info(
        "Loaded prompt catalog %s (%s)",
        catalog["version"],
        ", ".join(f"{pool}={len(catalog[pool])}" for pool in POOL_NAMES),
    )
    return catalog


def pick_weighted(items: list[dict], rng=random) -> dict:
    """Single cumulative pass; weight defaults to 1."""
    weights = [1 if item.get("weight") is None else item["weight"] for item in items]
    total = sum(weights)
    if total <= 0:
        return items[-1]

    point = rng.random() * total
    cumulative = 0
    for item, weight in zip(items, weights):
        cumulative += weight
        if point < cumulative:
            return item
    return items[-1]


def build_prompt(catalog: dict, rng=random) -> dict:
    modifier = pick_weighted(catalog["modifier"], rng)
    situation = pick_weighted(catalog["situation"], rng)
    content = pick_weighted(catalog["content"], rng)
    return {
        "modifier_id": modifier["id"],
        "situation_id": situation["id"],
        "content_id": content["id"],
        "text": f"{modifier['text']}{situation['text']}{content['text']}",
    }
