"""Meeting bot management -- Recall.ai bot lifecycle and reconciliation.

Provides RecallClient for the Recall.ai REST API, BotManager for bot
creation with per-owner dedup, ReadinessOracle for deciding when a bot's
transcript is fetchable, and BotPoller for periodic reconciliation.
"""
