#!/usr/bin/env python3
"""
Basic example showing a cached fetch, traversal and query with FigTreeLib.

This example demonstrates:
- A minimal Transport reading saved API responses from disk
- Fetching through the cache (the second fetch is a cache hit)
- Text extraction, page summaries and JMESPath queries

Usage:
    python examples/basic_async.py [response.json]

Without an argument the bundled sample document is used.
"""

import asyncio
import json
import sys
import tempfile
from pathlib import Path

# Add parent directory to path for development
sys.path.insert(0, str(Path(__file__).parent.parent))

from figtreelib import CoreConfig, FetchOrchestrator, Transport, open_cache, query
from figtreelib.aio import cache_summary, extract_texts, summarize_pages
from figtreelib.errors import NotFound
from figtreelib.testing import FILE_KEY, sample_file_payload


class SavedResponseTransport(Transport):
    """Serves one saved file response for every request."""

    def __init__(self, path=None):
        self.path = path
        self.requests = 0

    async def fetch(self, origin_id, depth, node_ids):
        self.requests += 1
        if self.path is None:
            return sample_file_payload()
        if not self.path.exists():
            raise NotFound(f"No saved response at {self.path}", status=404)
        return json.loads(self.path.read_text(encoding="utf-8"))


async def main():
    """Fetch a document twice and report on it."""
    response_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None

    with tempfile.TemporaryDirectory() as cache_dir:
        config = CoreConfig.for_directory(Path(cache_dir), ttl_seconds=300)
        cache = open_cache(config)

        async with SavedResponseTransport(response_path) as transport:
            orchestrator = FetchOrchestrator(transport, cache, config)

            first = await orchestrator.fetch(FILE_KEY)
            second = await orchestrator.fetch(FILE_KEY)
            document = second.result()

            print(f"Document: {document.name} (version {document.version})")
            print(f"  First fetch:  {first.state.name}")
            print(f"  Second fetch: {second.state.name}")
            print(f"  Transport requests: {transport.requests}")

        print(f"\nPages:")
        for summary in summarize_pages(document):
            print(f"  {summary.name}: {summary.frame_count} frames, {summary.text_node_count} text nodes")

        print(f"\nText:")
        for item in extract_texts(document):
            print(f"  [{item.path.to_path_string()}] {item.text}")

        print(f"\nQuery 'document.children[*].name':")
        print(f"  {query(document, 'document.children[*].name')}")

        print(f"\nCache:")
        print(json.dumps(cache_summary(cache)["stats"], indent=2))


if __name__ == "__main__":
    print("FigTreeLib - Basic Cached Fetch Example")
    print("=" * 50)
    asyncio.run(main())
