import json
from collections import Counter
from pathlib import Path

from pydantic import ValidationError

from ..core.errors import QueryFileError
from ..core.models import Query
from ..utils.log import get_logger

log = get_logger(__name__)


def load_queries(path: Path) -> list[Query]:
    """
    Load the ordered list of queries from a JSON file.

    Expected layout: ``{"queries": [{"id": "q1", "query": "all:transformers"}, ...]}``.

    Raises:
        QueryFileError: If the file is missing, not JSON, malformed, or repeats an id
    """
    log.info("loading_queries", path=str(path))
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise QueryFileError(f"Queries file not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise QueryFileError(f"Could not read queries file {path}: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("queries"), list):
        raise QueryFileError(f"{path} must contain an object with a 'queries' list")

    try:
        queries = [Query.model_validate(item) for item in payload["queries"]]
    except ValidationError as e:
        raise QueryFileError(f"Invalid query in {path}: {e}") from e

    counts = Counter(q.id for q in queries)
    duplicates = sorted(qid for qid, n in counts.items() if n > 1)
    if duplicates:
        raise QueryFileError(f"Duplicate query ids in {path}: {', '.join(duplicates)}")

    log.info("queries_loaded", count=len(queries), path=str(path))
    return queries
