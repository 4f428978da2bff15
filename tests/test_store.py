import sqlite3
from pathlib import Path

import pytest

from arxiv_explorer.core.errors import StorageError
from arxiv_explorer.core.store import PaperStore
from factories import make_entry


def test_init_db_is_idempotent(store: PaperStore) -> None:
    store.init_db()
    assert store.count() == 0


def test_filter_known_returns_stored_subset(store: PaperStore) -> None:
    store.persist_batch([make_entry("A"), make_entry("B")], "q1")

    assert store.filter_known({"A", "B", "C", "D"}) == {"A", "B"}
    assert store.filter_known({"C"}) == set()


def test_filter_known_empty_input_skips_database(tmp_path: Path) -> None:
    db_path = tmp_path / "missing" / "papers.sqlite"
    store = PaperStore(db_path)

    assert store.filter_known(set()) == set()
    assert not db_path.exists()


def test_filter_known_handles_more_ids_than_sqlite_parameters(store: PaperStore) -> None:
    stored = [make_entry(f"P{i}") for i in range(5)]
    store.persist_batch(stored, "q1")
    candidates = {f"P{i}" for i in range(2000)}

    assert store.filter_known(candidates) == {f"P{i}" for i in range(5)}


def test_filter_known_wraps_database_errors(tmp_path: Path) -> None:
    store = PaperStore(tmp_path / "uninitialized.sqlite")

    with pytest.raises(StorageError):
        store.filter_known({"A"})


def test_persist_batch_stores_all_entries(store: PaperStore) -> None:
    inserted = store.persist_batch([make_entry("A"), make_entry("C")], "q1")

    assert inserted == ["A", "C"]
    assert store.count_by_query() == {"q1": 2}


def test_persist_batch_empty_is_noop(store: PaperStore) -> None:
    assert store.persist_batch([], "q1") == []
    assert store.count() == 0


def test_persist_batch_rejects_foreign_query_entries(store: PaperStore) -> None:
    with pytest.raises(ValueError):
        store.persist_batch([make_entry("A", query_id="other")], "q1")
    assert store.count() == 0


def test_persist_batch_is_atomic(store: PaperStore) -> None:
    # Make the second insert of the batch fail inside SQLite
    with sqlite3.connect(store.db_path) as conn:
        conn.execute(
            """
            CREATE TRIGGER fail_on_c BEFORE INSERT ON papers
            WHEN NEW.paper_id = 'C'
            BEGIN
                SELECT RAISE(ABORT, 'simulated failure');
            END;
            """
        )
    conn.close()

    with pytest.raises(StorageError):
        store.persist_batch([make_entry("A"), make_entry("C")], "q1")

    assert store.filter_known({"A", "C"}) == set()
    assert store.count() == 0


def test_persist_batch_wraps_filesystem_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = PaperStore(blocker / "papers.sqlite")

    with pytest.raises(StorageError):
        store.persist_batch([make_entry("A")], "q1")
    with pytest.raises(StorageError):
        store.init_db()


def test_persist_batch_skips_ids_written_by_another_run(store: PaperStore) -> None:
    store.persist_batch([make_entry("B", query_id="q0")], "q0")

    inserted = store.persist_batch([make_entry("A"), make_entry("B")], "q1")

    assert inserted == ["A"]
    by_id = {e.id: e for e in store.list_all()}
    # first writer wins, the stored row is never overwritten
    assert by_id["B"].query_id == "q0"
    assert by_id["A"].query_id == "q1"


def test_list_all_orders_by_published_descending(store: PaperStore) -> None:
    store.persist_batch(
        [make_entry("old", days_ago=30), make_entry("new", days_ago=0), make_entry("mid", days_ago=3)],
        "q1",
    )

    assert [e.id for e in store.list_all()] == ["new", "mid", "old"]


def test_list_all_round_trips_entries(store: PaperStore) -> None:
    entry = make_entry("2401.00001v1")
    store.persist_batch([entry], "q1")

    (loaded,) = store.list_all()

    assert loaded == entry
    assert loaded.record.authors == ["Ada Lovelace", "Alan Turing"]
    assert loaded.enrichment.tags == entry.enrichment.tags
