"""
News Relay Service

Real-time crypto news relay. Ingests the upstream news WebSocket, drops
duplicate stories, scores them and fans them out to chat subscribers,
each with its own coin filter.

Architecture:
    upstream feed -> feed_client -> queue -> dispatcher -> [store, notifier]

Components:
    - feed_client: WebSocket connection (heartbeat, reconnect) and canonicalizer
    - dispatcher: dedup gate, subscriber matching, paced delivery
    - store: DedupStore / SubscriberRegistry protocols, Redis and in-memory backends
    - notifier: Telegram delivery and command polling
    - commands: /start, /status, /filter, /unfilter, /stop, /help
"""
