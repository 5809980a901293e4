"""Service layer wiring the indexing core to host applications."""
