"""Webhook inbound system.

Receives signed webhook events from other bots. Each webhook is
signature-verified, published to a durable queue, and persisted
asynchronously by the consumer.
"""
