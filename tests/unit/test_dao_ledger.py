"""Unit tests for GovernanceLedger proposal, voting and treasury rules."""

from __future__ import annotations

from typing import Any

import pytest

from cryptodevs_dao.dao.errors import (
    AlreadyExecutedError,
    AlreadyVotedError,
    ExternalCallFailedError,
    InsufficientTreasuryFundsError,
    InvalidAddressError,
    InvalidAmountError,
    InvalidVoteChoiceError,
    NotAMemberError,
    NotOwnerError,
    ProposalNotFoundError,
    TokenNotAvailableError,
    TransferFailedError,
    VotingClosedError,
    VotingStillOpenError,
)
from cryptodevs_dao.dao.ledger import GovernanceLedger
from cryptodevs_dao.dao.local_chain import AccountBook, CryptoDevsNft, FakeNftMarketplace
from cryptodevs_dao.dao.models import ProposalStatus, VoteChoice

PRICE = 10**17
WINDOW = 300


class _FlakyOracle:
    """Delegates to a real NFT registry but fails on the configured enumeration index."""

    def __init__(self, nft: CryptoDevsNft, *, fail_at_index: int | None = None) -> None:
        self._nft = nft
        self.fail_at_index = fail_at_index
        self.fail_balance = False

    def balance_of(self, address: str) -> int:
        if self.fail_balance:
            raise ConnectionError("rpc unavailable")
        return self._nft.balance_of(address)

    def token_of_owner_by_index(self, address: str, index: int) -> int:
        if index == self.fail_at_index:
            raise ConnectionError("rpc dropped mid-enumeration")
        return self._nft.token_of_owner_by_index(address, index)


class _ExplodingFunds:
    def send_value(self, recipient: str, amount: int) -> bool:
        raise RuntimeError("recipient reverted")


def _mint(nft: CryptoDevsNft, address: str, count: int) -> list[int]:
    return [nft.mint(address) for _ in range(count)]


@pytest.mark.unit
class TestCreateProposal:
    def test_member_creates_proposal_with_deadline(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any, clock: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)

        first = ledger.create_proposal(7, caller=member)
        second = ledger.create_proposal(8, caller=member)

        assert (first, second) == (0, 1)
        assert ledger.num_proposals == 2
        proposal = ledger.get_proposal(0)
        assert proposal.nft_token_id == 7
        assert proposal.deadline == clock.now + WINDOW
        assert (proposal.yay_votes, proposal.nay_votes) == (0, 0)
        assert proposal.executed is False
        assert proposal.status is ProposalStatus.OPEN

    def test_non_member_is_rejected(self, ledger: GovernanceLedger, make_address: Any) -> None:
        with pytest.raises(NotAMemberError):
            ledger.create_proposal(7, caller=make_address())
        assert ledger.num_proposals == 0

    def test_unavailable_token_is_rejected(
        self,
        ledger: GovernanceLedger,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        make_address: Any,
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        marketplace.purchase(7, value=PRICE)

        with pytest.raises(TokenNotAvailableError):
            ledger.create_proposal(7, caller=member)
        assert ledger.num_proposals == 0

    def test_oracle_failure_surfaces_as_external_call_failed(
        self,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        accounts: AccountBook,
        owner: str,
        make_address: Any,
    ) -> None:
        oracle = _FlakyOracle(nft)
        oracle.fail_balance = True
        ledger = GovernanceLedger(owner=owner, oracle=oracle, marketplace=marketplace, funds=accounts)

        with pytest.raises(ExternalCallFailedError) as exc_info:
            ledger.create_proposal(7, caller=make_address())

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert exc_info.value.context["call"] == "balance_of"
        assert ledger.num_proposals == 0


@pytest.mark.unit
class TestVoteOnProposal:
    def test_each_owned_nft_counts_once(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        member = make_address()
        tokens = _mint(nft, member, 3)
        ledger.create_proposal(7, caller=member)

        cast = ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)

        assert cast == 3
        proposal = ledger.get_proposal(0)
        assert (proposal.yay_votes, proposal.nay_votes) == (3, 0)
        assert proposal.voter_count == 3
        assert all(ledger.has_voted(0, token_id) for token_id in tokens)

    def test_second_vote_without_new_nfts_is_rejected(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 2)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.NAY, caller=member)

        with pytest.raises(AlreadyVotedError):
            ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)

        proposal = ledger.get_proposal(0)
        assert (proposal.yay_votes, proposal.nay_votes) == (0, 2)

    def test_transferred_nft_cannot_vote_twice(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        alice, bob = make_address(), make_address()
        (token,) = _mint(nft, alice, 1)
        ledger.create_proposal(7, caller=alice)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=alice)

        nft.transfer(token, sender=alice, recipient=bob)

        with pytest.raises(AlreadyVotedError):
            ledger.vote_on_proposal(0, VoteChoice.YAY, caller=bob)
        assert ledger.get_proposal(0).yay_votes == 1

    def test_newly_acquired_nft_adds_votes(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)

        new_token = nft.mint(member)
        assert ledger.voting_power(0, member) == 1

        assert ledger.vote_on_proposal(0, VoteChoice.NAY, caller=member) == 1
        proposal = ledger.get_proposal(0)
        assert (proposal.yay_votes, proposal.nay_votes) == (1, 1)
        assert ledger.has_voted(0, new_token)
        assert ledger.voting_power(0, member) == 0

    def test_vote_rejected_exactly_at_deadline(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any, clock: Any
    ) -> None:
        alice, bob = make_address(), make_address()
        _mint(nft, alice, 1)
        _mint(nft, bob, 1)
        ledger.create_proposal(7, caller=alice)

        clock.advance(WINDOW - 1)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=alice)

        clock.advance(1)
        with pytest.raises(VotingClosedError):
            ledger.vote_on_proposal(0, VoteChoice.YAY, caller=bob)
        assert ledger.get_proposal(0).yay_votes == 1
        assert ledger.get_proposal(0).status is ProposalStatus.CLOSED_PENDING

    @pytest.mark.parametrize("index", [-1, 1, 99])
    def test_unknown_proposal_index(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any, index: int
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.create_proposal(7, caller=member)

        with pytest.raises(ProposalNotFoundError):
            ledger.vote_on_proposal(index, VoteChoice.YAY, caller=member)

    def test_non_member_cannot_vote(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.create_proposal(7, caller=member)

        with pytest.raises(NotAMemberError):
            ledger.vote_on_proposal(0, VoteChoice.YAY, caller=make_address())

    def test_choice_accepts_names_and_wire_values(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        alice, bob = make_address(), make_address()
        _mint(nft, alice, 1)
        _mint(nft, bob, 1)
        ledger.create_proposal(7, caller=alice)

        ledger.vote_on_proposal(0, "nay", caller=alice)
        ledger.vote_on_proposal(0, 0, caller=bob)

        proposal = ledger.get_proposal(0)
        assert (proposal.yay_votes, proposal.nay_votes) == (1, 1)

    @pytest.mark.parametrize("choice", ["maybe", 2, -1, None])
    def test_invalid_choice_is_rejected(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any, choice: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.create_proposal(7, caller=member)

        with pytest.raises(InvalidVoteChoiceError):
            ledger.vote_on_proposal(0, choice, caller=member)
        assert ledger.get_proposal(0).voter_count == 0

    def test_enumeration_failure_leaves_no_partial_votes(
        self,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        accounts: AccountBook,
        owner: str,
        make_address: Any,
        clock: Any,
    ) -> None:
        oracle = _FlakyOracle(nft)
        ledger = GovernanceLedger(
            owner=owner, oracle=oracle, marketplace=marketplace, funds=accounts, clock=clock
        )
        member = make_address()
        _mint(nft, member, 3)
        ledger.create_proposal(7, caller=member)

        oracle.fail_at_index = 2
        with pytest.raises(ExternalCallFailedError):
            ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)

        proposal = ledger.get_proposal(0)
        assert (proposal.yay_votes, proposal.voter_count) == (0, 0)

        oracle.fail_at_index = None
        assert ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member) == 3

    def test_never_voted_token_reports_false(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.create_proposal(7, caller=member)

        assert ledger.has_voted(0, 12345) is False


@pytest.mark.unit
class TestExecuteProposal:
    @pytest.fixture
    def member(self, nft: CryptoDevsNft, make_address: Any) -> str:
        address = make_address()
        _mint(nft, address, 2)
        return address

    def test_execution_blocked_until_deadline(
        self, ledger: GovernanceLedger, member: str, clock: Any
    ) -> None:
        ledger.deposit(member, PRICE)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)

        clock.advance(WINDOW - 1)
        with pytest.raises(VotingStillOpenError):
            ledger.execute_proposal(0, caller=member)

        clock.advance(1)
        assert ledger.execute_proposal(0, caller=member) is True

    def test_passed_proposal_buys_nft_and_debits_treasury(
        self,
        ledger: GovernanceLedger,
        marketplace: FakeNftMarketplace,
        member: str,
        clock: Any,
    ) -> None:
        ledger.deposit(member, 3 * PRICE)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)
        clock.advance(WINDOW)

        assert ledger.execute_proposal(0, caller=member) is True

        assert ledger.treasury_balance == 2 * PRICE
        assert marketplace.sold_tokens() == {7: PRICE}
        assert marketplace.available(7) is False
        proposal = ledger.get_proposal(0)
        assert proposal.executed is True
        assert proposal.status is ProposalStatus.EXECUTED

    def test_second_execution_is_rejected(
        self, ledger: GovernanceLedger, member: str, clock: Any
    ) -> None:
        ledger.deposit(member, 2 * PRICE)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)
        clock.advance(WINDOW)
        ledger.execute_proposal(0, caller=member)

        with pytest.raises(AlreadyExecutedError):
            ledger.execute_proposal(0, caller=member)
        assert ledger.treasury_balance == PRICE

    def test_tie_is_rejection_without_purchase(
        self,
        ledger: GovernanceLedger,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        member: str,
        make_address: Any,
        clock: Any,
    ) -> None:
        opponent = make_address()
        _mint(nft, opponent, 2)
        ledger.deposit(member, PRICE)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.NAY, caller=opponent)
        clock.advance(WINDOW)

        assert ledger.execute_proposal(0, caller=member) is False

        assert ledger.treasury_balance == PRICE
        assert marketplace.sold_tokens() == {}
        assert ledger.get_proposal(0).executed is True

    def test_proposal_without_votes_executes_as_rejection(
        self, ledger: GovernanceLedger, member: str, clock: Any
    ) -> None:
        ledger.create_proposal(7, caller=member)
        clock.advance(WINDOW)

        assert ledger.execute_proposal(0, caller=member) is False
        assert ledger.get_proposal(0).executed is True

    def test_insufficient_funds_keeps_proposal_retryable(
        self,
        ledger: GovernanceLedger,
        marketplace: FakeNftMarketplace,
        member: str,
        clock: Any,
    ) -> None:
        ledger.deposit(member, PRICE - 1)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)
        clock.advance(WINDOW)

        with pytest.raises(InsufficientTreasuryFundsError) as exc_info:
            ledger.execute_proposal(0, caller=member)

        assert exc_info.value.context["price_wei"] == PRICE
        assert ledger.get_proposal(0).executed is False
        assert ledger.treasury_balance == PRICE - 1

        ledger.deposit(member, 1)
        assert ledger.execute_proposal(0, caller=member) is True
        assert ledger.treasury_balance == 0
        assert marketplace.sold_tokens() == {7: PRICE}

    def test_marketplace_failure_leaves_state_unchanged(
        self,
        ledger: GovernanceLedger,
        marketplace: FakeNftMarketplace,
        member: str,
        clock: Any,
    ) -> None:
        ledger.deposit(member, PRICE)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)
        marketplace.purchase(7, value=PRICE)
        clock.advance(WINDOW)

        with pytest.raises(ExternalCallFailedError) as exc_info:
            ledger.execute_proposal(0, caller=member)

        assert isinstance(exc_info.value.cause, ValueError)
        assert ledger.treasury_balance == PRICE
        assert ledger.get_proposal(0).executed is False

    def test_non_member_cannot_execute(
        self, ledger: GovernanceLedger, member: str, make_address: Any, clock: Any
    ) -> None:
        ledger.create_proposal(7, caller=member)
        clock.advance(WINDOW)

        with pytest.raises(NotAMemberError):
            ledger.execute_proposal(0, caller=make_address())
        assert ledger.get_proposal(0).executed is False

    def test_unknown_proposal(self, ledger: GovernanceLedger, member: str) -> None:
        with pytest.raises(ProposalNotFoundError):
            ledger.execute_proposal(0, caller=member)


@pytest.mark.unit
class TestTreasury:
    def test_deposit_from_anyone_accumulates(
        self, ledger: GovernanceLedger, make_address: Any
    ) -> None:
        assert ledger.deposit(make_address(), PRICE) == PRICE
        assert ledger.deposit(make_address(), 0) == PRICE
        assert ledger.deposit(make_address(), 5) == PRICE + 5
        assert ledger.treasury_balance == PRICE + 5

    @pytest.mark.parametrize("amount", [-1, True, 1.5, "100"])
    def test_invalid_deposit_amount(
        self, ledger: GovernanceLedger, make_address: Any, amount: Any
    ) -> None:
        with pytest.raises(InvalidAmountError):
            ledger.deposit(make_address(), amount)
        assert ledger.treasury_balance == 0

    def test_owner_withdraws_entire_balance(
        self, ledger: GovernanceLedger, accounts: AccountBook, owner: str, make_address: Any
    ) -> None:
        ledger.deposit(make_address(), 2 * PRICE)

        assert ledger.withdraw_funds(caller=owner) == 2 * PRICE

        assert ledger.treasury_balance == 0
        assert accounts.balance_of(owner) == 2 * PRICE

    def test_owner_match_ignores_address_case(
        self, ledger: GovernanceLedger, accounts: AccountBook, owner: str, make_address: Any
    ) -> None:
        ledger.deposit(make_address(), PRICE)

        assert ledger.withdraw_funds(caller=owner.upper().replace("0X", "0x")) == PRICE
        assert accounts.balance_of(owner) == PRICE

    def test_withdraw_with_empty_treasury(self, ledger: GovernanceLedger, owner: str) -> None:
        assert ledger.withdraw_funds(caller=owner) == 0
        assert ledger.treasury_balance == 0

    def test_non_owner_cannot_withdraw(self, ledger: GovernanceLedger, make_address: Any) -> None:
        ledger.deposit(make_address(), PRICE)

        with pytest.raises(NotOwnerError):
            ledger.withdraw_funds(caller=make_address())
        assert ledger.treasury_balance == PRICE

    def test_rejected_transfer_keeps_balance(
        self, ledger: GovernanceLedger, accounts: AccountBook, owner: str, make_address: Any
    ) -> None:
        ledger.deposit(make_address(), PRICE)
        accounts.reject_payments(owner)

        with pytest.raises(TransferFailedError):
            ledger.withdraw_funds(caller=owner)

        assert ledger.treasury_balance == PRICE
        assert accounts.balance_of(owner) == 0

    def test_raising_transfer_keeps_balance(
        self,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        owner: str,
        make_address: Any,
    ) -> None:
        ledger = GovernanceLedger(
            owner=owner,
            oracle=nft,
            marketplace=marketplace,
            funds=_ExplodingFunds(),
            initial_balance=PRICE,
        )

        with pytest.raises(TransferFailedError) as exc_info:
            ledger.withdraw_funds(caller=owner)

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert ledger.treasury_balance == PRICE


@pytest.mark.unit
class TestOwnership:
    def test_transfer_moves_withdraw_rights(
        self, ledger: GovernanceLedger, owner: str, make_address: Any
    ) -> None:
        successor = make_address()
        ledger.deposit(make_address(), PRICE)

        assert ledger.transfer_ownership(successor, caller=owner) == owner
        assert ledger.owner == successor

        with pytest.raises(NotOwnerError):
            ledger.withdraw_funds(caller=owner)
        assert ledger.withdraw_funds(caller=successor) == PRICE

    def test_non_owner_cannot_transfer(
        self, ledger: GovernanceLedger, owner: str, make_address: Any
    ) -> None:
        with pytest.raises(NotOwnerError):
            ledger.transfer_ownership(make_address(), caller=make_address())
        assert ledger.owner == owner

    @pytest.mark.parametrize("target", ["", "0x0000000000000000000000000000000000000000"])
    def test_transfer_to_invalid_address(
        self, ledger: GovernanceLedger, owner: str, target: str
    ) -> None:
        with pytest.raises(InvalidAddressError):
            ledger.transfer_ownership(target, caller=owner)
        assert ledger.owner == owner

    def test_constructor_requires_owner(
        self, nft: CryptoDevsNft, marketplace: FakeNftMarketplace, accounts: AccountBook
    ) -> None:
        with pytest.raises(InvalidAddressError):
            GovernanceLedger(owner="", oracle=nft, marketplace=marketplace, funds=accounts)

    def test_constructor_requires_positive_window(
        self,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        accounts: AccountBook,
        owner: str,
    ) -> None:
        with pytest.raises(ValueError):
            GovernanceLedger(
                owner=owner,
                oracle=nft,
                marketplace=marketplace,
                funds=accounts,
                voting_window_seconds=0,
            )


@pytest.mark.unit
class TestSnapshots:
    def test_restore_rewinds_every_mutation(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, owner: str, make_address: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 2)
        ledger.deposit(member, PRICE)
        ledger.create_proposal(7, caller=member)
        checkpoint = ledger.snapshot()

        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)
        ledger.create_proposal(8, caller=member)
        ledger.deposit(member, PRICE)
        ledger.transfer_ownership(make_address(), caller=owner)

        ledger.restore(checkpoint)

        assert ledger.snapshot() == checkpoint
        assert ledger.num_proposals == 1
        assert ledger.owner == owner
        assert ledger.get_proposal(0).yay_votes == 0
        assert ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member) == 2

    def test_snapshot_is_detached_from_live_state(
        self, ledger: GovernanceLedger, nft: CryptoDevsNft, make_address: Any
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.create_proposal(7, caller=member)
        before = ledger.snapshot()

        ledger.vote_on_proposal(0, VoteChoice.YAY, caller=member)

        assert before.proposals[0].voters == frozenset()
        assert ledger.snapshot().proposals[0].yay_votes == 1

    def test_from_state_rebuilds_ledger(
        self,
        ledger: GovernanceLedger,
        nft: CryptoDevsNft,
        marketplace: FakeNftMarketplace,
        accounts: AccountBook,
        make_address: Any,
        clock: Any,
    ) -> None:
        member = make_address()
        _mint(nft, member, 1)
        ledger.deposit(member, PRICE)
        ledger.create_proposal(7, caller=member)
        ledger.vote_on_proposal(0, VoteChoice.NAY, caller=member)

        rebuilt = GovernanceLedger.from_state(
            ledger.snapshot(), oracle=nft, marketplace=marketplace, funds=accounts, clock=clock
        )

        assert rebuilt.snapshot() == ledger.snapshot()
        assert rebuilt.list_proposals() == ledger.list_proposals()
        with pytest.raises(AlreadyVotedError):
            rebuilt.vote_on_proposal(0, VoteChoice.YAY, caller=member)
