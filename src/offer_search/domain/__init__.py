"""Domain layer: the offer document, entity payloads and value objects."""
