"""
Streaming Lag Common Package.

Shared building blocks for the streaming-lag probe: settings, the fatal error
taxonomy, the heartbeat table definition and the transactional store client.

Key modules include:
-   `config`: Centralized configuration management.
-   `errors`: The crash-only error taxonomy.
-   `models`: SQLAlchemy definition of the heartbeat table.
-   `db`: Database engine and the Store Client.
"""

__version__ = "0.1.0"
