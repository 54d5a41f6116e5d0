"""Domain-Driven Design bounded contexts for the agent UI protocol.

This package contains:
- Identity Context: region discovery, visibility and the active context
- Emission Context: throttled outbound event messages
- Command Context: inbound command execution
- Relay Context: per-context state cache and command delivery
"""
