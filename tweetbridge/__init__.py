"""Tweetbridge — republishes a Twitter home timeline into a Mattermost channel.

Modules:
    config      — .env / YAML / environment configuration
    state       — JSON-backed trust map and timeline cursor
    trust       — who may issue privileged commands
    mattermost  — REST + websocket transport
    twitter     — OAuth1-signed API v1.1 transport
    session     — handshake, event stream, reconnect with backoff
    poller      — fixed-interval timeline polling and publishing
    commands    — chat command activation and handlers
    bridge      — task wiring and shutdown
"""

__version__ = "0.1.0"
