"""
BurnWatch - cloud spend sync and anomaly alerting engine.

Pulls daily billing data from AWS, GCP and Vercel into a spend ledger,
detects per-service spend spikes and notifies Slack and Discord.
"""

__version__ = "1.0.0"
