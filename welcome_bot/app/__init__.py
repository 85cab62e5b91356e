"""
Welcome Bot Service - Microsoft Teams conversationUpdate handling.

Provides:
- Classification of conversationUpdate activities (team renamed, bot added/removed, members added)
- Membership bookkeeping through a pluggable state recorder
- Proactive welcome cards delivered over per-recipient 1:1 conversations
- Per-recipient delivery tracking for diagnostics
"""
