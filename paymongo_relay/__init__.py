"""PayMongo checkout relay: checkout intents, webhook relay and CRM sync."""

__version__ = "1.0.0"
