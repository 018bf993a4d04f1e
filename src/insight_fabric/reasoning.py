"""
Path narration through an OpenAI-compatible chat completions endpoint.

The graph core only sees the `ReasoningProvider` protocol; this module is one
implementation of it, wired in when `reasoning_url` is configured.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .errors import DependencyError
from .graph.models import Edge, Node
from .http import build_client, transient_retry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You explain how two entities in a business intelligence knowledge graph are connected. "
    "Answer with a JSON object: "
    '{"explanation": string, "reasoning": [string], "confidence": number between 0 and 1, '
    '"keyRelationships": [{"fromLabel": string, "toLabel": string, "relationship": string, '
    '"significance": string}]}.'
)


def describe_path(path_nodes: list[Node], path_edges: list[Edge]) -> str:
    by_id = {n.id: n for n in path_nodes}
    lines = ["Nodes:"]
    for i, n in enumerate(path_nodes, start=1):
        desc = f" - {n.description}" if n.description else ""
        lines.append(f"{i}. {n.label} ({n.node_type.value}){desc}")
    lines.append("Relationships:")
    for e in path_edges:
        src = by_id.get(e.source_node_id)
        tgt = by_id.get(e.target_node_id)
        lines.append(
            f"- {src.label if src else e.source_node_id} --{e.edge_type.value}--> "
            f"{tgt.label if tgt else e.target_node_id} (weight {e.weight:g})"
        )
    return "\n".join(lines)


class HttpReasoningProvider:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout_s: float = 20.0,
        client: httpx.Client | None = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self.model = model
        self.client = client or build_client(base_url.rstrip("/"), headers=headers, read_timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    @transient_retry()
    def _complete(self, payload: dict[str, Any]) -> dict[str, Any]:
        r = self.client.post("/chat/completions", json=payload)
        r.raise_for_status()
        return r.json()

    def explain(self, path_nodes: list[Node], path_edges: list[Edge]) -> dict[str, Any]:
        payload = {
            "model": self.model,
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": describe_path(path_nodes, path_edges)},
            ],
        }
        try:
            data = self._complete(payload)
            content = data["choices"][0]["message"]["content"]
            parsed = json.loads(content)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
            raise DependencyError(f"reasoning provider error: {e}") from e
        if not isinstance(parsed, dict):
            raise DependencyError("reasoning provider returned a non-object response")
        logger.debug("Reasoning provider narrated a %d-hop path", len(path_edges))
        return parsed
