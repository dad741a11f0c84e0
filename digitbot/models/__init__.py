from digitbot.models.messages import (
    AuthorizeMessage,
    BalanceMessage,
    BuyMessage,
    ConnectionLost,
    ErrorMessage,
    InboundMessage,
    ProposalMessage,
    TickMessage,
    parse_message,
)
from digitbot.models.state import BotState, TradeStats
from digitbot.models.trade import (
    Decision,
    EntryType,
    Trade,
    TradeStatus,
    contract_wins,
    quantize_money,
)

__all__ = [
    "AuthorizeMessage",
    "BalanceMessage",
    "BotState",
    "BuyMessage",
    "ConnectionLost",
    "Decision",
    "EntryType",
    "ErrorMessage",
    "InboundMessage",
    "ProposalMessage",
    "TickMessage",
    "Trade",
    "TradeStats",
    "TradeStatus",
    "contract_wins",
    "parse_message",
    "quantize_money",
]
