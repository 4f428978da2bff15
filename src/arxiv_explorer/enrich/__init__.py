"""
Per-query enrichment pipeline.

- ``orchestrator``: fetch, drop already stored papers, enrich the rest concurrently,
  persist the successful ones as one batch
- ``gpt``: the OpenAI-backed enrichment service
"""

from .gpt import GPTEnricher, build_enrichment_prompt, parse_enrichment
from .orchestrator import enrich_records, process_query, run_queries

__all__ = [
    "GPTEnricher",
    "build_enrichment_prompt",
    "enrich_records",
    "parse_enrichment",
    "process_query",
    "run_queries",
]
