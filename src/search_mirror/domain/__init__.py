"""Domain layer: index documents, hits and outcome value objects."""
