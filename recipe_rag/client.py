"""Send one question to the recipe RAG server and print the result.

    recipe-rag-client -n 20 -t low "Something sweet without eggs?"
    recipe-rag-client -e data "vegan lasagna"
"""

import argparse
import json
import sys
from typing import Any, Dict, List

import httpx

from recipe_rag.core.config import get_settings
from recipe_rag.models.schemas import ThinkingLevel


DEFAULT_QUESTION = "I love pastries, but I am allergic to eggs. What could I bake?"


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Query the recipe RAG server.")
    parser.add_argument("question", nargs="*", help="Question words, joined by spaces.")
    parser.add_argument("-n", "--numDocs", dest="nb_results", type=positive_int, default=10,
                        help="Number of documents to retrieve.")
    parser.add_argument("-t", "--thinking", choices=[level.value for level in ThinkingLevel], default=None,
                        help="Generation effort hint.")
    parser.add_argument("-e", "--endpoint", choices=["query", "data"], default="query",
                        help="'query' for an answer, 'data' for the raw matching rows.")
    parser.add_argument("--url", default=None, help="Server URL (defaults to SERVER_URL).")
    parser.add_argument("--timeout", type=float, default=120.0, help="Request timeout in seconds.")
    # Question words may appear on either side of the options.
    return parser.parse_intermixed_args(argv)


def build_payload(endpoint: str, question: str, nb_results: int, thinking: str | None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"question": question, "nbResults": nb_results}
    if endpoint == "query" and thinking is not None:
        payload["thinkingLevel"] = thinking
    return payload


def send(url: str, endpoint: str, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    if "//" not in url:
        url = f"http://{url}"
    response = httpx.post(f"{url.rstrip('/')}/{endpoint}", json=payload, timeout=timeout)
    try:
        body = response.json()
    except ValueError:
        body = None

    if response.is_error:
        # Proxies in front of the server may answer with any body shape.
        message = body.get("detail") if isinstance(body, dict) else None
        raise RuntimeError(str(message) if message else f"HTTP {response.status_code}")
    if not isinstance(body, dict):
        raise RuntimeError(f"Unexpected response body from {response.url}")
    return body


def render(endpoint: str, result: Dict[str, Any]) -> str:
    if endpoint == "data":
        rows = json.dumps(result.get("data", []), ensure_ascii=False, indent=2)
        return f"\nRows:\n{rows}\n\nQuery duration: {result.get('duration')}ms\n"

    return (
        f"\nAnswer:\n{result.get('answer')}\n"
        f"\nQuery duration: {result.get('duration')}ms"
        f"\nRows searched: {result.get('nbResults')}"
        f"\nThinking level: {result.get('thinking')}"
        f"\nModel used: {result.get('model')}\n"
    )


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    question = " ".join(args.question) or DEFAULT_QUESTION
    url = args.url or get_settings().server_url

    print(f"\nQuestion:\n{question}\n")
    try:
        result = send(url, args.endpoint, build_payload(args.endpoint, question, args.nb_results, args.thinking),
                      args.timeout)
    except (httpx.HTTPError, RuntimeError, ValueError) as exc:
        print(f"Error querying server: {exc}", file=sys.stderr)
        return 1

    print(render(args.endpoint, result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
