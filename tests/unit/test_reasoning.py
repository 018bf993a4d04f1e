import json

import httpx
import pytest

from insight_fabric.errors import DependencyError
from insight_fabric.graph.models import Edge, EdgeType, Node, NodeType
from insight_fabric.reasoning import HttpReasoningProvider, describe_path


def _path():
    a = Node(node_type=NodeType.CONTENT_PIECE, label="X", description="launch post")
    b = Node(node_type=NodeType.JOURNALIST, label="Y")
    e = Edge(source_node_id=a.id, target_node_id=b.id, edge_type=EdgeType.AUTHORED_BY, weight=1.5)
    return [a, b], [e]


def _provider(handler) -> HttpReasoningProvider:
    client = httpx.Client(base_url="https://llm.test/v1", transport=httpx.MockTransport(handler))
    return HttpReasoningProvider("https://llm.test/v1", model="test-model", client=client)


def test_describe_path_lists_nodes_and_relationships() -> None:
    nodes, edges = _path()
    text = describe_path(nodes, edges)
    assert "1. X (content_piece) - launch post" in text
    assert "X --authored_by--> Y (weight 1.5)" in text


def test_explain_parses_json_content() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        content = json.dumps({"explanation": "Y wrote X", "reasoning": ["authored_by"], "confidence": 0.8})
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    provider = _provider(handler)
    out = provider.explain(*_path())
    provider.close()

    assert out["explanation"] == "Y wrote X"
    assert seen["path"] == "/v1/chat/completions"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["response_format"] == {"type": "json_object"}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "bad request"}),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json={"choices": [{"message": {"content": "not json"}}]}),
        httpx.Response(200, json={"choices": [{"message": {"content": "[1, 2]"}}]}),
    ],
)
def test_explain_failures_raise_dependency_error(response: httpx.Response) -> None:
    provider = _provider(lambda request: response)
    with pytest.raises(DependencyError):
        provider.explain(*_path())
