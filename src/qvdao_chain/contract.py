"""Quadratic-voting governance contract adapter.

Encodes write calls, decodes view results and event logs for the deployed
governance contract. Voting and delegation rules live on chain; this module
only speaks the ABI.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_abi import decode, encode
from web3 import Web3

from .address import ZERO_ADDRESS, AddressCodec
from .config import GovernanceLimitsConfig
from .exceptions import InvalidInput, WalletError, WalletUnavailable, classify_provider_error
from .provider import PROVIDER_FAILURES, WalletProvider, to_int

logger = logging.getLogger(__name__)


# ============ Governance ABI ============

GOVERNANCE_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [],
        "name": "joinDAO",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_title", "type": "string"},
            {"name": "_description", "type": "string"},
        ],
        "name": "createProposal",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_proposalId", "type": "uint256"},
            {"name": "_credits", "type": "uint256"},
            {"name": "_support", "type": "bool"},
        ],
        "name": "castQuadraticVote",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "_delegate", "type": "address"}],
        "name": "delegate",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "address"}],
        "name": "members",
        "outputs": [
            {"name": "isMember", "type": "bool"},
            {"name": "contribution", "type": "uint256"},
            {"name": "votingPower", "type": "uint256"},
            {"name": "delegatedTo", "type": "address"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "uint256"}],
        "name": "proposals",
        "outputs": [
            {"name": "title", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "proposer", "type": "address"},
            {"name": "forVotes", "type": "uint256"},
            {"name": "againstVotes", "type": "uint256"},
            {"name": "executed", "type": "bool"},
            {"name": "endTime", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "proposalCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "memberCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "id", "type": "uint256"},
            {"indexed": True, "name": "proposer", "type": "address"},
            {"indexed": False, "name": "startBlock", "type": "uint256"},
            {"indexed": False, "name": "endBlock", "type": "uint256"},
        ],
        "name": "ProposalCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "proposalId", "type": "uint256"},
            {"indexed": True, "name": "delegate", "type": "address"},
            {"indexed": False, "name": "support", "type": "bool"},
            {"indexed": False, "name": "weight", "type": "uint256"},
        ],
        "name": "Voted",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "proposalId", "type": "uint256"},
            {"indexed": False, "name": "passed", "type": "bool"},
        ],
        "name": "ProposalFinalized",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "Staked",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "member", "type": "address"},
        ],
        "name": "MemberAdded",
        "type": "event",
    },
]

GOVERNANCE_EVENTS = ("ProposalCreated", "Voted", "ProposalFinalized", "Staked", "MemberAdded")


def _signature(entry: Dict[str, Any]) -> str:
    types = ",".join(param["type"] for param in entry["inputs"])
    return f"{entry['name']}({types})"


def _abi_entries(kind: str) -> Dict[str, Dict[str, Any]]:
    return {entry["name"]: entry for entry in GOVERNANCE_ABI if entry["type"] == kind}


_FUNCTIONS = _abi_entries("function")
_EVENTS = _abi_entries("event")

_SELECTORS: Dict[str, bytes] = {
    name: Web3.keccak(text=_signature(entry))[:4] for name, entry in _FUNCTIONS.items()
}
EVENT_TOPICS: Dict[str, str] = {
    name: Web3.to_hex(Web3.keccak(text=_signature(entry))) for name, entry in _EVENTS.items()
}
_EVENTS_BY_TOPIC: Dict[str, str] = {topic: name for name, topic in EVENT_TOPICS.items()}


@dataclass
class ContractEvent:
    """A decoded governance contract log."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "args": self.args,
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
        }


class ProposalStatus(str, Enum):
    """Lifecycle of a proposal as seen by the client."""
    ACTIVE = "active"
    PENDING = "pending"
    EXECUTED = "executed"


@dataclass(frozen=True)
class MemberInfo:
    is_member: bool
    contribution: int
    voting_power: int
    delegated_to: str


@dataclass(frozen=True)
class DelegationInfo:
    current_delegate: str
    is_delegating: bool
    voting_power: int


@dataclass(frozen=True)
class ProposalInfo:
    proposal_id: int
    title: str
    description: str
    proposer: str
    for_votes: int
    against_votes: int
    executed: bool
    end_time: int

    def status(self, now: Optional[float] = None) -> ProposalStatus:
        """Executed proposals stay executed; otherwise active until end_time."""
        if self.executed:
            return ProposalStatus.EXECUTED
        if self.end_time > (time.time() if now is None else now):
            return ProposalStatus.ACTIVE
        return ProposalStatus.PENDING


@dataclass
class DaoAnalytics:
    """Aggregate governance figures."""
    total_members: int
    total_proposals: int
    active_proposals: int
    total_votes: int
    proposals: List[ProposalInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_members": self.total_members,
            "total_proposals": self.total_proposals,
            "active_proposals": self.active_proposals,
            "total_votes": self.total_votes,
        }


ReadCall = Tuple[str, Sequence[Any]]


def _require_int(field_name: str, value: Any, minimum: int, maximum: Optional[int] = None) -> int:
    # bool is an int subclass but never a valid quantity here
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(field_name, "must be an integer", value)
    if value < minimum:
        raise InvalidInput(field_name, f"must be at least {minimum}", value)
    if maximum is not None and value > maximum:
        raise InvalidInput(field_name, f"must be no more than {maximum}", value)
    return value


def _require_text(field_name: str, value: Any, min_length: int, max_length: int) -> str:
    if not isinstance(value, str):
        raise InvalidInput(field_name, "must be a string", value)
    text = value.strip()
    if len(text) < min_length:
        raise InvalidInput(field_name, f"must be at least {min_length} characters long", value)
    if len(text) > max_length:
        raise InvalidInput(field_name, f"must be no more than {max_length} characters long", value)
    return text


class GovernanceContract:
    """
    ABI adapter for the governance contract.

    Write helpers validate their arguments and return transaction descriptors
    ready for TransactionMonitor.send_transaction; reads go through eth_call.
    """

    def __init__(
        self,
        address: str,
        provider: Optional[WalletProvider] = None,
        limits: Optional[GovernanceLimitsConfig] = None,
    ):
        self._address = AddressCodec.to_checksum(address, field="contract_address")
        self._provider = provider
        self._limits = limits or GovernanceLimitsConfig()

    @property
    def address(self) -> str:
        return self._address

    # ============ Call encoding ============

    @staticmethod
    def encode_call(function_name: str, args: Sequence[Any] = ()) -> bytes:
        """Encode calldata for a governance function."""
        entry = _FUNCTIONS.get(function_name)
        if entry is None:
            raise ValueError(f"Unknown governance function: {function_name}")
        types = [param["type"] for param in entry["inputs"]]
        if len(types) != len(args):
            raise ValueError(f"{function_name} expects {len(types)} arguments, got {len(args)}")
        return _SELECTORS[function_name] + encode(types, list(args))

    def _descriptor(self, data: bytes, value: int = 0) -> Dict[str, Any]:
        return {"to": self._address, "data": Web3.to_hex(data), "value": hex(value)}

    def join_dao(self, stake_wei: int) -> Dict[str, Any]:
        """joinDAO() with the membership stake attached."""
        limits = self._limits
        stake_wei = _require_int(
            "stake_wei",
            stake_wei,
            limits.min_membership_fee_wei,
            limits.max_membership_fee_wei,
        )
        return self._descriptor(self.encode_call("joinDAO"), value=stake_wei)

    def create_proposal(self, title: str, description: str) -> Dict[str, Any]:
        """createProposal(title, description) with surrounding whitespace stripped."""
        limits = self._limits
        title = _require_text("title", title, limits.title_min_length, limits.title_max_length)
        description = _require_text(
            "description",
            description,
            limits.description_min_length,
            limits.description_max_length,
        )
        return self._descriptor(self.encode_call("createProposal", [title, description]))

    def cast_quadratic_vote(self, proposal_id: int, credits: int, support: bool) -> Dict[str, Any]:
        limits = self._limits
        proposal_id = _require_int("proposal_id", proposal_id, 0)
        credits = _require_int("credits", credits, limits.min_vote_credits, limits.max_vote_credits)
        if not isinstance(support, bool):
            raise InvalidInput("support", "must be a boolean", support)
        return self._descriptor(
            self.encode_call("castQuadraticVote", [proposal_id, credits, support])
        )

    def delegate(self, delegate_address: str) -> Dict[str, Any]:
        delegate_address = AddressCodec.to_checksum(delegate_address, field="delegate")
        return self._descriptor(self.encode_call("delegate", [delegate_address]))

    # ============ Reads ============

    async def _call(self, function_name: str, args: Sequence[Any] = ()) -> Tuple[Any, ...]:
        if self._provider is None:
            raise WalletUnavailable("Provider not available")
        data = self.encode_call(function_name, args)
        try:
            result = await self._provider.request(
                "eth_call", [{"to": self._address, "data": Web3.to_hex(data)}, "latest"]
            )
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_call") from e
        output_types = [param["type"] for param in _FUNCTIONS[function_name]["outputs"]]
        return decode(output_types, Web3.to_bytes(hexstr=result))

    async def get_member(self, address: str) -> MemberInfo:
        address = AddressCodec.to_checksum(address, field="member")
        is_member, contribution, voting_power, delegated_to = await self._call("members", [address])
        return MemberInfo(
            is_member=is_member,
            contribution=contribution,
            voting_power=voting_power,
            delegated_to=Web3.to_checksum_address(delegated_to),
        )

    async def get_delegation_info(self, address: str) -> DelegationInfo:
        member = await self.get_member(address)
        return DelegationInfo(
            current_delegate=member.delegated_to,
            is_delegating=member.delegated_to != ZERO_ADDRESS,
            voting_power=member.voting_power,
        )

    async def get_proposal(self, proposal_id: int) -> ProposalInfo:
        proposal_id = _require_int("proposal_id", proposal_id, 0)
        title, description, proposer, for_votes, against_votes, executed, end_time = (
            await self._call("proposals", [proposal_id])
        )
        return ProposalInfo(
            proposal_id=proposal_id,
            title=title,
            description=description,
            proposer=Web3.to_checksum_address(proposer),
            for_votes=for_votes,
            against_votes=against_votes,
            executed=executed,
            end_time=end_time,
        )

    async def proposal_count(self) -> int:
        return (await self._call("proposalCount"))[0]

    async def member_count(self) -> int:
        return (await self._call("memberCount"))[0]

    async def get_proposals(self) -> List[ProposalInfo]:
        """Every proposal, ids 0 through proposalCount - 1."""
        count = await self.proposal_count()
        return [await self.get_proposal(proposal_id) for proposal_id in range(count)]

    async def get_analytics(self, now: Optional[float] = None) -> DaoAnalytics:
        total_members, total_proposals = await asyncio.gather(
            self.member_count(),
            self.proposal_count(),
        )
        proposals = await self.get_proposals()
        return DaoAnalytics(
            total_members=total_members,
            total_proposals=total_proposals,
            active_proposals=sum(
                1 for proposal in proposals if proposal.status(now) is ProposalStatus.ACTIVE
            ),
            total_votes=sum(p.for_votes + p.against_votes for p in proposals),
            proposals=proposals,
        )

    async def batch_read(
        self,
        calls: Sequence[ReadCall],
    ) -> List[Union[Tuple[Any, ...], WalletError]]:
        """
        Run several view calls concurrently.

        Each result is either the decoded output tuple or the WalletError the
        call failed with; one failing read does not fail the batch.
        """
        results = await asyncio.gather(
            *(self._call(name, args) for name, args in calls),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, WalletError):
                raise result
        return list(results)

    # ============ Logs ============

    @staticmethod
    def event_topic(event_name: str) -> str:
        topic = EVENT_TOPICS.get(event_name)
        if topic is None:
            raise ValueError(f"Unknown governance event: {event_name}")
        return topic

    def parse_receipt_logs(self, receipt: Optional[Dict[str, Any]]) -> List[ContractEvent]:
        """Decode the governance events emitted by this contract in a receipt."""
        events: List[ContractEvent] = []
        for log in (receipt or {}).get("logs") or []:
            emitter = log.get("address")
            if emitter and emitter.lower() != self._address.lower():
                continue
            event = self.decode_log(log)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def decode_log(log: Dict[str, Any]) -> Optional[ContractEvent]:
        """Decode a raw eth_getLogs entry, or None for foreign topics."""
        topics = log.get("topics") or []
        if not topics:
            return None
        topic0 = topics[0] if isinstance(topics[0], str) else Web3.to_hex(topics[0])
        name = _EVENTS_BY_TOPIC.get(topic0.lower())
        if name is None:
            return None

        inputs = _EVENTS[name]["inputs"]
        indexed = [param for param in inputs if param["indexed"]]
        non_indexed = [param for param in inputs if not param["indexed"]]

        args: Dict[str, Any] = {}
        for param, raw_topic in zip(indexed, topics[1:]):
            topic_bytes = Web3.to_bytes(hexstr=raw_topic) if isinstance(raw_topic, str) else raw_topic
            (value,) = decode([param["type"]], topic_bytes)
            args[param["name"]] = value

        data = log.get("data") or "0x"
        if non_indexed:
            values = decode([param["type"] for param in non_indexed], Web3.to_bytes(hexstr=data))
            for param, value in zip(non_indexed, values):
                args[param["name"]] = value

        for param in inputs:
            if param["type"] == "address" and param["name"] in args:
                args[param["name"]] = Web3.to_checksum_address(args[param["name"]])

        block_number = log.get("blockNumber")
        log_index = log.get("logIndex")
        return ContractEvent(
            name=name,
            args=args,
            block_number=to_int(block_number) if block_number is not None else None,
            transaction_hash=log.get("transactionHash"),
            log_index=to_int(log_index) if log_index is not None else None,
        )
