from pathlib import Path

import pytest

from arxiv_explorer.core.store import PaperStore


@pytest.fixture
def store(tmp_path: Path) -> PaperStore:
    paper_store = PaperStore(tmp_path / "papers.sqlite")
    paper_store.init_db()
    return paper_store
