"""Search mirror: keeps a full-text index in step with a primary record store.

Typical wiring:
    settings = Settings()
    configure_logging(settings.get_log_level(), settings.log_json, query_log=settings.log_queries)
    registry = IndexRegistry(entities=[EntityIndexConfig(entity_type="Person", index="site")])
    service = IndexableService.from_settings(registry, store, settings)
    service.after_save("Person", 42)
    people = service.search("Person", "alan")
"""

__version__ = "0.1.0"
