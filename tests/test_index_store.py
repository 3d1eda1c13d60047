from __future__ import annotations

import sqlite3
import tempfile
import unittest
from pathlib import Path

from markov_brain import IndexStore, StorageError, StoreOpenError
from markov_brain.db import BACKWARD_TABLE, FORWARD_TABLE, StateQueries


class StateQueriesTests(unittest.TestCase):
    def test_columns_follow_order(self) -> None:
        queries = StateQueries.build(3)
        self.assertEqual(queries.columns, ("token1_id", "token2_id", "token3_id"))
        self.assertIn("token3_id = ?", queries.find_state)
        self.assertEqual(queries.new_state.count("?"), 3)

    def test_order_below_one_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            StateQueries.build(0)


class IndexStoreOpenTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "index.sqlite3"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_order_is_fixed_at_creation(self) -> None:
        store, order = IndexStore.open_or_create(self.db_path, 3)
        self.assertEqual(order, 3)
        store.close()

        reopened, order = IndexStore.open_or_create(self.db_path, 2)
        try:
            self.assertEqual(order, 3)
            self.assertEqual(reopened.order, 3)
            self.assertEqual(reopened.get_config("order"), "3")
        finally:
            reopened.close()

    def test_default_order_when_none_requested(self) -> None:
        with IndexStore(self.db_path) as store:
            self.assertEqual(store.order, 2)

    def test_new_store_rejects_invalid_order(self) -> None:
        with self.assertRaises(StoreOpenError):
            IndexStore(self.db_path, 0)

    def test_corrupt_file_raises_store_open_error(self) -> None:
        self.db_path.write_bytes(b"definitely not a sqlite database " * 64)
        with self.assertRaises(StoreOpenError):
            IndexStore(self.db_path)

    def test_invalid_stored_order_raises_store_open_error(self) -> None:
        IndexStore(self.db_path, 2).close()
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("UPDATE markov_config SET val = 'zero' WHERE key = 'order'")
        conn.commit()
        conn.close()
        with self.assertRaises(StoreOpenError):
            IndexStore(self.db_path)

    def test_close_flushes_pending_batch(self) -> None:
        store = IndexStore(self.db_path, 1)
        store.begin_batch()
        store.find_or_create_token("w", "kept")
        store.close()

        with IndexStore(self.db_path) as reopened:
            self.assertIsNotNone(reopened.find_token("w", "kept"))

    def test_nested_batches_commit_once(self) -> None:
        store = IndexStore(self.db_path, 1)
        observer = sqlite3.connect(str(self.db_path))
        try:
            store.begin_batch()
            store.begin_batch()
            store.find_or_create_token("w", "nested")
            store.end_batch()
            self.assertTrue(store.in_batch)
            self.assertEqual(observer.execute("SELECT count(*) FROM token").fetchone()[0], 0)
            store.end_batch()
            self.assertFalse(store.in_batch)
            self.assertEqual(observer.execute("SELECT count(*) FROM token").fetchone()[0], 1)
        finally:
            observer.close()
            store.close()


class IndexStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = IndexStore(":memory:", 2)

    def tearDown(self) -> None:
        self.store.close()

    def test_token_creation_is_idempotent(self) -> None:
        first = self.store.find_or_create_token("w", "hello")
        second = self.store.find_or_create_token("w", "hello")
        self.assertEqual(first, second)
        record = self.store.get_token(first)
        assert record is not None
        self.assertEqual(record.count, 2)
        self.assertEqual(self.store.stats().tokens, 1)

    def test_tokens_are_unique_per_kind(self) -> None:
        word = self.store.find_or_create_token("w", "x")
        other = self.store.find_or_create_token("_", "x")
        self.assertNotEqual(word, other)

    def test_state_creation_is_idempotent(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        b = self.store.find_or_create_token("w", "b")
        state = self.store.find_or_create_state([a, b])
        self.assertEqual(self.store.find_or_create_state((a, b)), state)
        self.assertNotEqual(self.store.find_or_create_state([b, a]), state)
        self.assertEqual(self.store.get_state_tokens(state), (a, b))
        self.assertIsNone(self.store.get_state_tokens(999))

    def test_state_arity_is_checked(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        with self.assertRaises(ValueError):
            self.store.find_or_create_state([a])
        with self.assertRaises(ValueError):
            self.store.find_state([a, a, a])

    def test_transition_counts_accumulate(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        b = self.store.find_or_create_token("w", "b")
        state = self.store.find_or_create_state([a, b])
        self.store.record_forward(state, a)
        self.store.record_forward(state, a)
        self.store.record_backward(state, b)
        self.assertEqual(self.store.transition_count(FORWARD_TABLE, state, a), 2)
        self.assertEqual(self.store.transition_count(BACKWARD_TABLE, state, b), 1)
        self.assertEqual(self.store.transition_count(BACKWARD_TABLE, state, a), 0)
        self.assertEqual(self.store.stats().transitions, 1)
        with self.assertRaises(ValueError):
            self.store.transition_count("token", state, a)

    def test_sampling_without_edges_returns_none(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        state = self.store.find_or_create_state([a, a])
        self.assertIsNone(self.store.sample_forward(state))
        self.assertIsNone(self.store.sample_backward(state))

    def test_tokens_in_order_keep_repeats(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        records = self.store.get_tokens_in_order([a, a])
        self.assertEqual([record.text for record in records], ["a", "a"])

    def test_tokens_in_order_rejects_unknown_ids(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        with self.assertRaises(StorageError):
            self.store.get_tokens_in_order([a, 404])

    def test_random_state_containing(self) -> None:
        a = self.store.find_or_create_token("w", "a")
        b = self.store.find_or_create_token("w", "b")
        c = self.store.find_or_create_token("w", "c")
        state = self.store.find_or_create_state([b, c])
        self.assertEqual(self.store.random_state_containing(c), state)
        self.assertIsNone(self.store.random_state_containing(a))

    def test_max_state_id_is_zero_when_empty(self) -> None:
        self.assertEqual(self.store.max_state_id(), 0)

    def test_failed_statement_rolls_back_batch(self) -> None:
        self.store.begin_batch()
        self.store.begin_batch()
        self.store.find_or_create_token("w", "lost")
        with self.assertRaises(StorageError):
            self.store.execute("INSERT INTO missing_table VALUES (1)")
        self.assertEqual(self.store.batch_depth, 0)
        self.assertIsNone(self.store.find_token("w", "lost"))

    def test_batch_context_aborts_on_error(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.store.batch():
                self.store.find_or_create_token("w", "lost")
                raise RuntimeError("boom")
        self.assertFalse(self.store.in_batch)
        self.assertIsNone(self.store.find_token("w", "lost"))

    def test_unbalanced_end_batch_raises(self) -> None:
        with self.assertRaises(StorageError):
            self.store.end_batch()

    def test_order_cannot_be_overwritten(self) -> None:
        with self.assertRaises(ValueError):
            self.store.set_config("order", "5")
        self.store.set_config("label", "demo")
        self.assertEqual(self.store.get_config("label"), "demo")
        self.assertIsNone(self.store.get_config("missing"))


if __name__ == "__main__":
    unittest.main()
