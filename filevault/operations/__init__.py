"""Core operations: Task Queue, Metadata Store, Access Control and ingestion."""
