import math
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

from lending_aggregator.errors import AccountNotFound, RpcError
from lending_aggregator.rpc.batch import chunked, get_multiple_accounts
from lending_aggregator.rpc.calls import call_with_retry, fetch_account, fetch_slot


def multiple_accounts_client(missing: set[Pubkey] = frozenset()) -> MagicMock:
    def respond(keys, **kwargs):
        return SimpleNamespace(
            value=[
                None if key in missing else SimpleNamespace(data=bytes(key)[:4])
                for key in keys
            ]
        )

    client = MagicMock()
    client.get_multiple_accounts.side_effect = respond
    return client


def test_chunked_splits_evenly():
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))


@pytest.mark.parametrize(("count", "batch_size"), [(1, 100), (250, 100), (7, 3)])
def test_issues_one_call_per_chunk(count, batch_size):
    keys = [Pubkey.new_unique() for _ in range(count)]
    client = multiple_accounts_client()

    result = get_multiple_accounts(client, keys, batch_size=batch_size, max_tries=1)

    assert client.get_multiple_accounts.call_count == math.ceil(count / batch_size)
    assert set(result) == set(keys)
    assert all(result[key] == bytes(key)[:4] for key in keys)


def test_missing_accounts_are_absent():
    keys = [Pubkey.new_unique() for _ in range(5)]
    client = multiple_accounts_client(missing={keys[1], keys[3]})

    result = get_multiple_accounts(client, keys, max_tries=1)

    assert set(result) == {keys[0], keys[2], keys[4]}


def test_empty_input_makes_no_calls():
    client = multiple_accounts_client()
    assert get_multiple_accounts(client, []) == {}
    client.get_multiple_accounts.assert_not_called()


def test_rejects_oversized_batches():
    with pytest.raises(ValueError):
        get_multiple_accounts(MagicMock(), [Pubkey.new_unique()], batch_size=101)


def test_call_with_retry_retries_transport_errors():
    method = MagicMock(side_effect=[SolanaRpcException("flaky"), "ok"])
    assert call_with_retry(method, max_tries=2) == "ok"
    assert method.call_count == 2


def test_call_with_retry_gives_up_with_rpc_error():
    method = MagicMock(side_effect=SolanaRpcException("down"))
    with pytest.raises(RpcError, match="after 1 attempt"):
        call_with_retry(method, max_tries=1, description="getSlot")


def test_non_transport_errors_propagate_unchanged():
    method = MagicMock(side_effect=KeyError("bad"))
    with pytest.raises(KeyError):
        call_with_retry(method, max_tries=3)
    assert method.call_count == 1


def test_fetch_slot():
    client = MagicMock()
    client.get_slot.return_value = SimpleNamespace(value=123_456)
    assert fetch_slot(client) == 123_456


def test_fetch_account_raises_when_missing():
    client = MagicMock()
    client.get_account_info.return_value = SimpleNamespace(value=None)
    with pytest.raises(AccountNotFound):
        fetch_account(client, Pubkey.new_unique(), max_tries=1)
