"""Record store port and its in-memory and Postgres implementations."""
