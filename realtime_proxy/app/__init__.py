"""
Realtime Proxy Application
==========================

Relays browser WebSocket connections to the OpenAI Realtime API, attaching
the Authorization header browsers cannot send themselves.

Packages:
    - config: Immutable settings loaded from the environment
    - models: Health payload and session summary models
    - realtime: Session bridge and WebSocket route
    - main: Application factory and process entry point
"""
