"""Tests for the Redis-backed StorageClient (mocked redis)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import redis

from statusbot.errors import FatalStorageError, RetryableStorageError
from statusbot.models import WriteRequest
from statusbot.storage.protocol import StorageClient
from statusbot.storage.redis_store import RedisStorage

TABLE = "t"


@pytest.fixture()
def mock_redis():
    return MagicMock()


@pytest.fixture()
def store(mock_redis):
    return RedisStorage(mock_redis)


def _req(key: str, item_type: str | None = "webhook", **kwargs) -> WriteRequest:
    item = {"id": key}
    if item_type:
        item["item_type"] = item_type
    return WriteRequest(key=key, item=item, **kwargs)


def test_satisfies_protocol(store):
    assert isinstance(store, StorageClient)


class TestBatchWrite:
    def test_empty(self, store, mock_redis):
        assert store.batch_write(TABLE, []).unprocessed == []
        mock_redis.pipeline.assert_not_called()

    def test_all_written(self, store, mock_redis):
        pipe = mock_redis.pipeline.return_value
        pipe.execute.return_value = [True, 1, True, 1]
        result = store.batch_write(TABLE, [_req("a"), _req("b")])
        assert result.unprocessed == []
        mock_redis.pipeline.assert_called_once_with(transaction=False)
        pipe.execute.assert_called_once_with(raise_on_error=False)
        first = pipe.set.call_args_list[0]
        assert first.args[0] == "t:a"
        assert json.loads(first.args[1]) == {"id": "a", "item_type": "webhook"}
        assert first.kwargs == {"nx": False, "exat": None}
        index_call = pipe.zadd.call_args_list[0]
        assert index_call.args[0] == "t:idx:webhook"
        assert list(index_call.args[1]) == ["a"]
        assert index_call.kwargs == {"nx": True}

    def test_command_errors_mark_unprocessed(self, store, mock_redis):
        pipe = mock_redis.pipeline.return_value
        # a: ok; b: SET failed; c (no item_type, 1 command): failed
        pipe.execute.return_value = [True, 1, redis.ResponseError("OOM"), 0, redis.ResponseError("OOM")]
        requests = [_req("a"), _req("b"), _req("c", item_type=None)]
        result = store.batch_write(TABLE, requests)
        assert [r.key for r in result.unprocessed] == ["b", "c"]

    def test_conditional_write_not_applied_is_processed(self, store, mock_redis):
        pipe = mock_redis.pipeline.return_value
        pipe.execute.return_value = [None, 0]
        result = store.batch_write(TABLE, [_req("a", if_absent=True)])
        assert result.unprocessed == []
        assert pipe.set.call_args.kwargs["nx"] is True

    def test_connection_error_is_retryable(self, store, mock_redis):
        mock_redis.pipeline.return_value.execute.side_effect = redis.ConnectionError("reset")
        with pytest.raises(RetryableStorageError):
            store.batch_write(TABLE, [_req("a")])

    def test_other_redis_error_is_fatal(self, store, mock_redis):
        mock_redis.pipeline.return_value.execute.side_effect = redis.ResponseError("WRONGTYPE")
        with pytest.raises(FatalStorageError) as exc_info:
            store.batch_write(TABLE, [_req("a")])
        assert exc_info.value.item_ids == ["a"]


class TestPutItem:
    def test_applied(self, store, mock_redis):
        pipe = mock_redis.pipeline.return_value
        pipe.execute.return_value = [True]
        assert store.put_item(TABLE, _req("k", item_type=None, if_absent=True, expires_at=1700000000)) is True
        mock_redis.pipeline.assert_called_once_with(transaction=True)
        assert pipe.set.call_args.kwargs == {"nx": True, "exat": 1700000000}

    def test_not_applied(self, store, mock_redis):
        mock_redis.pipeline.return_value.execute.return_value = [None, 0]
        assert store.put_item(TABLE, _req("k", if_absent=True)) is False


class TestReads:
    def test_get_item(self, store, mock_redis):
        mock_redis.get.return_value = '{"id": "a", "n": 1}'
        assert store.get_item(TABLE, "a") == {"id": "a", "n": 1}
        mock_redis.get.assert_called_once_with("t:a")

    def test_get_missing(self, store, mock_redis):
        mock_redis.get.return_value = None
        assert store.get_item(TABLE, "a") is None

    def test_get_timeout_is_retryable(self, store, mock_redis):
        mock_redis.get.side_effect = redis.TimeoutError()
        with pytest.raises(RetryableStorageError):
            store.get_item(TABLE, "a")

    def test_delete(self, store, mock_redis):
        store.delete_item(TABLE, "a")
        mock_redis.delete.assert_called_once_with("t:a")

    def test_query_pages(self, store, mock_redis):
        mock_redis.zrange.return_value = ["a", "b"]
        mock_redis.mget.return_value = ['{"id": "a"}', None]
        page = store.query(TABLE, "webhook", limit=2)
        assert page.items == [{"id": "a"}]
        assert page.next_cursor == "2"
        mock_redis.zrange.assert_called_once_with("t:idx:webhook", 0, 1)

    def test_query_last_page(self, store, mock_redis):
        mock_redis.zrange.return_value = ["c"]
        mock_redis.mget.return_value = ['{"id": "c"}']
        page = store.query(TABLE, "webhook", cursor="2", limit=2)
        assert page.next_cursor is None
        mock_redis.zrange.assert_called_once_with("t:idx:webhook", 2, 3)

    def test_query_empty_index(self, store, mock_redis):
        mock_redis.zrange.return_value = []
        page = store.query(TABLE, "webhook")
        assert page.items == []
        assert page.next_cursor is None
        mock_redis.mget.assert_not_called()
