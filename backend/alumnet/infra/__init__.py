"""Infrastructure adapters: database pool, redis, auth."""
