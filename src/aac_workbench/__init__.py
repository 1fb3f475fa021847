"""
AAC Workbench: orchestration layer for the multi-tool assistant shell.

Keeps feature side panels in sync with navigation, lets each feature add
context to outgoing assistant requests, and manages the chat session against
the remote assistant backend. Underneath, it:
1. Routes structured reply data back into feature-owned shared state
2. Signals cache keys the data-fetching layer should invalidate
3. Ranks reusable past interpretations for new communication input
"""

__version__ = "0.1.0"
