"""Database clients and connections.

Imports are intentionally NOT eagerly loaded here so that importing a model
or a service never opens a connection pool as a side effect.
Use explicit imports: ``from app.db.redis import RedisClient``, etc.
"""
