"""HTTP API for triggering syncs and testing notification webhooks."""
