"""
Commerce Kernel - order fulfillment and trust workflow engine

A transactional engine for conversational selling with:
- Order state machine with revisioned, lock-guarded transitions
- Buyer-claims / operator-confirms payment handshake
- Atomic stock commit and compensating release
- Rule-based escalation of conversations to a human operator
- Per-buyer, per-merchant relationship counters
"""

__version__ = "0.1.0"
