from __future__ import annotations

import re
from typing import Any, List, Optional, Tuple

from loreseek.core.config import RetrievalConfig
from loreseek.core.types import Importance, QueryIntent, ValidationReport, WorldContextIntent


# entries look like:  - query: "...", then optional collections: [a, b] and importance: "..."
_ENTRY_SPLIT_RE = re.compile(r"(?=\s*-\s*query\s*[：:])", re.IGNORECASE)
_QUERY_RE = re.compile(r"query\s*[：:]\s*[\"']([^\"']+)[\"']")
_COLLECTIONS_RE = re.compile(r"collections\s*[：:]\s*\[([^\]]*)\]")
_IMPORTANCE_RE = re.compile(r"importance\s*[：:]\s*[\"']([^\"']+)[\"']")

IMPORTANCE_VALUES = {i.value for i in Importance}


def _extract_block(text: str, tag: str) -> Optional[str]:
    match = re.search(rf"<{tag}>([\s\S]*?)</{tag}>", text, re.IGNORECASE)
    return match.group(1).strip() if match else None


def _parse_entry(block: str) -> Optional[QueryIntent]:
    query = None
    collections: List[str] = []
    importance = None

    for line in (ln.strip() for ln in block.split("\n")):
        if not line:
            continue

        m = _QUERY_RE.search(line)
        if m:
            query = m.group(1)
            continue

        m = _COLLECTIONS_RE.search(line)
        if m:
            inner = m.group(1).strip()
            if inner:
                collections = [c.strip().strip("\"'") for c in inner.split(",")]
                collections = [c for c in collections if c]
            continue

        m = _IMPORTANCE_RE.search(line)
        if m:
            importance = m.group(1)

    if not query:
        return None
    return QueryIntent(query=query, collections=collections, importance=Importance.parse(importance))


def parse_world_context_intent(text: Optional[str]) -> Optional[WorldContextIntent]:
    """
    Parse a <WorldContextIntent> block emitted by the upstream model.

    Returns None when there is no block; a block without <Queries> yields an
    intent with no queries. Entries without a query line are dropped.
    """
    if not text or not isinstance(text, str):
        return None

    block = _extract_block(text, "WorldContextIntent")
    if block is None:
        return None

    analysis = _extract_block(block, "Analysis") or ""
    queries_block = _extract_block(block, "Queries")
    if not queries_block:
        return WorldContextIntent(raw=block, analysis=analysis)

    queries: List[QueryIntent] = []
    for entry in _ENTRY_SPLIT_RE.split(queries_block):
        entry = entry.strip()
        if not entry.startswith("-"):
            continue
        parsed = _parse_entry(entry)
        if parsed is not None:
            queries.append(parsed)

    return WorldContextIntent(raw=block, analysis=analysis, queries=queries)


def validate_world_context_intent(intent: Any) -> ValidationReport:
    if not isinstance(intent, WorldContextIntent):
        return ValidationReport.from_errors(["intent is not a WorldContextIntent"])

    errors: List[str] = []
    if not intent.queries:
        errors.append("at least one query is required")
    for i, q in enumerate(intent.queries):
        if not q.query or not isinstance(q.query, str):
            errors.append(f"queries[{i}] has no query text")
        importance = q.importance.value if isinstance(q.importance, Importance) else q.importance
        if importance not in IMPORTANCE_VALUES:
            errors.append(f"queries[{i}] has invalid importance: {importance}")
    return ValidationReport.from_errors(errors)


def intent_to_retrieval_config(
    intent: Optional[WorldContextIntent],
    default_config: Optional[RetrievalConfig] = None,
) -> Tuple[List[QueryIntent], RetrievalConfig]:
    """
    The queries to run for `intent` and the config to run them with.

    Intents carry no retrieval settings of their own, so the config is
    `default_config` or the defaults. A missing intent yields no queries.
    """
    config = default_config or RetrievalConfig()
    if intent is None:
        return [], config
    return list(intent.queries), config


def format_world_context_intent(intent: Optional[WorldContextIntent]) -> str:
    if intent is None:
        return ""

    lines: List[str] = []
    if intent.analysis:
        lines += ["Analysis:", intent.analysis, ""]

    if intent.queries:
        lines.append("Queries:")
        for i, q in enumerate(intent.queries, start=1):
            lines.append(f"{i}. {q.query}")
            if q.collections:
                lines.append(f"   collections: {', '.join(q.collections)}")
            lines.append(f"   importance: {q.importance.value}")
            lines.append("")

    return "\n".join(lines)
