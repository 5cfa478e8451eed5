"""ORM Models — SQLAlchemy declarative models for users, sessions, chats, messages.

Invariants:
    - All models inherit from Base (db/base.py)
    - User is the ownership root; chats and messages cascade from it

Design Decisions:
    - One file per concern for locality
    - All models imported here so SQLAlchemy resolves string-based relationship()
      references before any query runs
"""

from chatdesk.models.user import User, Account, AuthSession  # noqa: F401
from chatdesk.models.chat import Chat  # noqa: F401
from chatdesk.models.message import Message  # noqa: F401
