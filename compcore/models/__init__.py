from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .user import User  # noqa: F401
from .competition import Competition, Entry, EntryTicket  # noqa: F401
from .instant_win import InstantPrize, InstantWinTicket  # noqa: F401
from .ledger import LedgerTransaction, WithdrawalRequest  # noqa: F401
from .draw import DrawRecord  # noqa: F401

__all__ = [
    "Base",
    "User",
    "Competition",
    "Entry",
    "EntryTicket",
    "InstantPrize",
    "InstantWinTicket",
    "LedgerTransaction",
    "WithdrawalRequest",
    "DrawRecord",
]
