"""
Tests for pacefund/services/blockchain.py — USDC transfer lookups via web3.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from web3.exceptions import TransactionNotFound, Web3Exception

from pacefund.services.blockchain import (
    BlockchainClient,
    TRANSFER_TOPIC,
    generate_payment_uri,
    normalize_address,
)
from pacefund.utils.errors import TransportError, UpstreamRejected, ValidationError

TOKEN = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
TARGET = "0x1111111111111111111111111111111111111111"
SENDER = "0x2222222222222222222222222222222222222222"


def _topic(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def _log(tx_byte: int, amount: int, block: int, log_index: int = 0) -> dict:
    return {
        "transactionHash": bytes([tx_byte]) * 32,
        "blockNumber": block,
        "logIndex": log_index,
        "topics": [bytes.fromhex(TRANSFER_TOPIC[2:]), _topic(SENDER), _topic(TARGET)],
        "data": amount.to_bytes(32, "big"),
    }


@pytest.fixture
def w3():
    mock = MagicMock()
    mock.eth.get_block_number = AsyncMock(return_value=1000)
    mock.eth.get_logs = AsyncMock(return_value=[])
    mock.eth.get_block = AsyncMock(return_value={"timestamp": 1700000000, "number": 950})
    mock.eth.get_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 950})
    return mock


@pytest.fixture
def client(w3):
    return BlockchainClient("http://rpc.invalid", TOKEN.lower(), timeout=0.5, w3=w3)


class TestAddressHelpers:
    def test_normalize_checksums(self):
        assert normalize_address(TOKEN.lower()) == TOKEN

    @pytest.mark.parametrize("value", ["", "0x123", "not-an-address", None])
    def test_normalize_rejects_malformed(self, value):
        with pytest.raises(ValidationError):
            normalize_address(value)

    def test_payment_uri(self):
        uri = generate_payment_uri(TARGET, 5_000_000, TOKEN, 84532)
        assert uri == f"ethereum:{TOKEN}@84532/transfer?address={TARGET}&uint256=5000000"


class TestGetTransfers:
    @pytest.mark.asyncio
    async def test_filters_by_token_and_recipient(self, client, w3):
        await client.get_transfers(TARGET, 900, 1000)

        params = w3.eth.get_logs.await_args.args[0]
        assert params["fromBlock"] == 900
        assert params["toBlock"] == 1000
        assert params["address"] == TOKEN
        assert params["topics"][0] == TRANSFER_TOPIC
        assert params["topics"][1] is None
        assert params["topics"][2] == "0x" + "0" * 24 + TARGET[2:]

    @pytest.mark.asyncio
    async def test_decodes_logs_oldest_first(self, client, w3):
        w3.eth.get_logs.return_value = [
            _log(0xbb, 7_000_000, 960),
            _log(0xaa, 5_000_000, 950, log_index=3),
        ]

        transfers = await client.get_transfers(TARGET, 900, 1000)

        assert [t.block_number for t in transfers] == [950, 960]
        first = transfers[0]
        assert first.transaction_hash == "0x" + "aa" * 32
        assert first.amount == 5_000_000
        assert first.from_address == SENDER
        assert first.to_address == TARGET

    @pytest.mark.asyncio
    async def test_invalid_recipient(self, client):
        with pytest.raises(ValidationError):
            await client.get_transfers("0xnope", 0, 10)


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self, client, w3):
        async def hang():
            await asyncio.sleep(5)

        w3.eth.get_block_number = MagicMock(side_effect=lambda: hang())

        with pytest.raises(TransportError) as exc_info:
            await client.get_block_number()

        assert exc_info.value.timeout is True

    @pytest.mark.asyncio
    async def test_rpc_rejection_is_upstream_rejected(self, client, w3):
        w3.eth.get_logs = AsyncMock(side_effect=Web3Exception("query returned more than 10000 results"))

        with pytest.raises(UpstreamRejected):
            await client.get_transfers(TARGET, 0, 1000)

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self, client, w3):
        w3.eth.get_block_number = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(TransportError) as exc_info:
            await client.get_block_number()

        assert exc_info.value.timeout is False


class TestBlocksAndReceipts:
    @pytest.mark.asyncio
    async def test_block_timestamp(self, client, w3):
        assert await client.get_block_timestamp(950) == 1700000000
        w3.eth.get_block.assert_awaited_once_with(950)

    @pytest.mark.asyncio
    async def test_successful_receipt(self, client):
        assert await client.get_transaction_status("0xabc") == {"status": "completed", "block_number": 950}

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, client, w3):
        w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 951}
        assert await client.get_transaction_status("0xabc") == {"status": "failed", "block_number": 951}

    @pytest.mark.asyncio
    async def test_unmined_transaction_is_pending(self, client, w3):
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not found"))
        assert await client.get_transaction_status("0xabc") == {"status": "pending", "block_number": None}
