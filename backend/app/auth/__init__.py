"""Authentication module (JWT session tokens).

Provides the HTTP login/signup endpoints and the token verifier the chat
WebSocket uses at connection time.

Services:
    - TokenService: issues and verifies HS256 session tokens.
    - UserStore: in-memory signup registry.
"""
