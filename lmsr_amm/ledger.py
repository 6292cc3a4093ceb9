"""
In-memory ledger. Holds accounts, position tokens, and the transaction log.

The market maker never moves money itself. For each trade it calls one of

    settle_buy(trader, market_id, position_id, is_back, quote_amount, tokens)
    settle_sell(trader, market_id, position_id, is_back, quote_amount, tokens)

and the ledger does the transfer between the trader and the market's maker
account. Each settle either fully succeeds or raises before touching any
balance.

The ledger does NOT know about LMSR, masses or prices. It knows which
positions exist in which market, who holds what, and nothing else.

Every balance mutation produces a Transaction.
"""

from lmsr_amm.models import Account, Transaction, holding_key, next_id


class LedgerError(Exception):
    pass


class AccountNotFound(LedgerError):
    pass


class InsufficientBalance(LedgerError):
    pass


class InsufficientPosition(LedgerError):
    pass


class InMemoryLedger:

    def __init__(self):
        self.accounts: dict[int, Account] = {}
        self.transactions: list[Transaction] = []
        self.positions: dict[int, list[int]] = {}   # market_id -> position ids
        self.makers: dict[int, int] = {}            # market_id -> account id

    def create_account(self, balance: int = 0) -> Account:
        acc = Account.new(available=balance)
        self.accounts[acc.id] = acc
        return acc

    def get_account(self, account_id: int) -> Account:
        acc = self.accounts.get(account_id)
        if acc is None:
            raise AccountNotFound(f"account {account_id} not found")
        return acc

    def mint(self, account_id: int, amount: int) -> Transaction:
        """Create quote currency from nothing. The only way money enters."""
        if amount <= 0:
            raise LedgerError(f"mint amount must be positive, got {amount}")
        acc = self.get_account(account_id)
        acc.available += amount
        return self._record(account_id, amount, 0, "mint")

    # ------------------------------------------------------------------
    # Markets and positions
    # ------------------------------------------------------------------

    def create_market(self) -> int:
        """Allocate a market id and its maker account."""
        market_id = next_id("market")
        self.positions[market_id] = []
        self.makers[market_id] = self.create_account().id
        return market_id

    def create_position(self, market_id: int) -> int:
        if market_id not in self.positions:
            raise LedgerError(f"market {market_id} not found")
        position_id = next_id("position")
        self.positions[market_id].append(position_id)
        return position_id

    def position_exists(self, market_id: int, position_id: int) -> bool:
        return position_id in self.positions.get(market_id, ())

    def maker_account(self, market_id: int) -> Account:
        account_id = self.makers.get(market_id)
        if account_id is None:
            raise LedgerError(f"market {market_id} has no maker account")
        return self.get_account(account_id)

    def fund_maker(self, market_id: int, amount: int) -> Transaction:
        """Mint subsidy into the market's maker account."""
        return self.mint(self.maker_account(market_id).id, amount)

    # ------------------------------------------------------------------
    # Trade settlement
    # ------------------------------------------------------------------

    def settle_buy(self, trader: int, market_id: int, position_id: int,
                   is_back: bool, quote_amount: int,
                   tokens: int) -> None:
        """
        Trader pays quote_amount to the maker and receives tokens.
        Raises InsufficientBalance if the trader can't pay.
        """
        acc = self.get_account(trader)
        maker = self.maker_account(market_id)
        if acc.available < quote_amount:
            raise InsufficientBalance(
                f"account {trader}: need {quote_amount}, "
                f"have {acc.available} available"
            )

        key = holding_key(market_id, position_id, is_back)
        acc.available -= quote_amount
        acc.holdings[key] = acc.holdings.get(key, 0) + tokens
        maker.available += quote_amount
        self._record(trader, -quote_amount, tokens, "buy",
                     market_id, position_id, is_back)
        self._record(maker.id, quote_amount, 0, "maker:buy",
                     market_id, position_id, is_back)

    def settle_sell(self, trader: int, market_id: int, position_id: int,
                    is_back: bool, quote_amount: int,
                    tokens: int) -> None:
        """
        Trader gives up tokens and the maker pays quote_amount.
        Raises InsufficientPosition if the trader doesn't hold the tokens,
        InsufficientBalance if the maker can't pay.
        """
        acc = self.get_account(trader)
        maker = self.maker_account(market_id)
        held = acc.tokens(market_id, position_id, is_back)
        if held < tokens:
            raise InsufficientPosition(
                f"account {trader}: need {tokens} tokens, hold {held}"
            )
        if maker.available < quote_amount:
            raise InsufficientBalance(
                f"maker of market {market_id}: need {quote_amount}, "
                f"have {maker.available}"
            )

        key = holding_key(market_id, position_id, is_back)
        acc.holdings[key] = held - tokens
        if acc.holdings[key] == 0:
            del acc.holdings[key]
        acc.available += quote_amount
        maker.available -= quote_amount
        self._record(trader, quote_amount, -tokens, "sell",
                     market_id, position_id, is_back)
        self._record(maker.id, -quote_amount, 0, "maker:sell",
                     market_id, position_id, is_back)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def total_minted(self) -> int:
        """Sum of all mint transactions. The total money in the system."""
        return sum(tx.available_delta for tx in self.transactions
                   if tx.reason == "mint")

    def total_available(self) -> int:
        return sum(acc.available for acc in self.accounts.values())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _record(self, account_id, available_delta, token_delta, reason,
                market_id=None, position_id=None, is_back=None) -> Transaction:
        tx = Transaction.new(
            account_id=account_id,
            available_delta=available_delta,
            token_delta=token_delta,
            reason=reason,
            market_id=market_id,
            position_id=position_id,
            is_back=is_back,
        )
        self.transactions.append(tx)
        return tx
