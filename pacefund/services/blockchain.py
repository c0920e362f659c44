"""
USDC transfer lookups on Base Sepolia via JSON-RPC (web3.py).

Only what sponsorship confirmation needs: current block number, ERC-20
Transfer logs to one recipient over a bounded block range, block
timestamps for matched transfers, and transaction receipt status.
Amounts stay integer token units end to end.

Every RPC call is bounded by rpc_timeout_seconds:
- timeout              -> TransportError(timeout=True)
- node rejected call   -> UpstreamRejected
- any other I/O error  -> TransportError
"""
import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Awaitable, Optional
from urllib.parse import urlencode

from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from pacefund.config import get_settings
from pacefund.utils.errors import TransportError, UpstreamRejected, ValidationError

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


@dataclass
class TokenTransfer:
    transaction_hash: str
    block_number: int
    log_index: int
    from_address: str
    to_address: str
    amount: int
    timestamp: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["amount"] = str(self.amount)
        data.pop("log_index")
        return data


def normalize_address(address: str) -> str:
    """Checksum an address, raising ValidationError for anything malformed."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Invalid wallet address format: {address}")
    return Web3.to_checksum_address(address)


def _address_topic(address: str) -> str:
    """Left-pad a 20-byte address to a 32-byte indexed topic."""
    return "0x" + "0" * 24 + address[2:].lower()


def _topic_address(topic) -> str:
    return Web3.to_checksum_address("0x" + bytes(topic)[-20:].hex())


def generate_payment_uri(recipient: str, amount_units: int, token_address: str, chain_id: int) -> str:
    """EIP-681 ERC-20 transfer URI a wallet can open to pay the sponsorship."""
    query = urlencode({"address": recipient, "uint256": amount_units})
    return f"ethereum:{token_address}@{chain_id}/transfer?{query}"


class BlockchainClient:
    """Read-only access to one ERC-20 token contract."""

    def __init__(
        self,
        rpc_url: str,
        token_address: str,
        timeout: float = 10.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.token_address = normalize_address(token_address)
        self.timeout = timeout
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    async def _call(self, awaitable: Awaitable, what: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"RPC {what} timed out after {self.timeout}s", timeout=True) from e
        except (Web3Exception, ValueError) as e:
            raise UpstreamRejected(f"RPC {what} rejected: {e}") from e
        except Exception as e:
            raise TransportError(f"RPC {what} failed: {e}") from e

    async def get_block_number(self) -> int:
        return int(await self._call(self.w3.eth.get_block_number(), "eth_blockNumber"))

    async def get_transfers(
        self,
        to_address: str,
        from_block: int,
        to_block: int | str = "latest",
    ) -> list[TokenTransfer]:
        """Transfer events to `to_address` in [from_block, to_block], oldest first."""
        recipient = normalize_address(to_address)
        logs = await self._call(
            self.w3.eth.get_logs({
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": self.token_address,
                "topics": [TRANSFER_TOPIC, None, _address_topic(recipient)],
            }),
            "eth_getLogs",
        )

        transfers = []
        for log in logs:
            topics = log["topics"]
            if len(topics) < 3:
                continue
            transfers.append(TokenTransfer(
                transaction_hash=Web3.to_hex(log["transactionHash"]),
                block_number=int(log["blockNumber"]),
                log_index=int(log.get("logIndex", 0)),
                from_address=_topic_address(topics[1]),
                to_address=_topic_address(topics[2]),
                amount=int.from_bytes(bytes(log["data"]), "big"),
            ))
        transfers.sort(key=lambda t: (t.block_number, t.log_index))
        return transfers

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self._call(self.w3.eth.get_block(block_number), "eth_getBlockByNumber")
        return int(block["timestamp"])

    async def get_transaction_status(self, tx_hash: str) -> dict:
        """
        Receipt-based status of a transaction.
        Returns: {"status": "pending" | "completed" | "failed", "block_number": int | None}
        """
        try:
            receipt = await asyncio.wait_for(
                self.w3.eth.get_transaction_receipt(tx_hash), timeout=self.timeout,
            )
        except TransactionNotFound:
            return {"status": "pending", "block_number": None}
        except asyncio.TimeoutError as e:
            raise TransportError("RPC eth_getTransactionReceipt timed out", timeout=True) from e
        except (Web3Exception, ValueError) as e:
            raise UpstreamRejected(f"RPC eth_getTransactionReceipt rejected: {e}") from e
        except Exception as e:
            raise TransportError(f"RPC eth_getTransactionReceipt failed: {e}") from e

        if receipt is None:
            return {"status": "pending", "block_number": None}
        status = "completed" if receipt["status"] == 1 else "failed"
        return {"status": status, "block_number": int(receipt["blockNumber"])}


def get_blockchain_client() -> BlockchainClient:
    settings = get_settings()
    return BlockchainClient(
        rpc_url=settings.rpc_url,
        token_address=settings.usdc_contract_address,
        timeout=settings.rpc_timeout_seconds,
    )
