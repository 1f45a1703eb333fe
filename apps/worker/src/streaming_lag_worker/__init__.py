"""
Streaming Lag Worker Service Package.

The worker is a long-lived probe that writes the current time into the single
row of `<schema>.streaming_lag_data` on a PostgreSQL primary at a fixed
interval. A reader on a streaming replica subtracts that timestamp from its own
clock to obtain the replication lag in seconds rather than in bytes.

Key Responsibilities of this Module:
- **Service Identification**: `SERVICE_NAME` is the worker's name. It appears
  in every log record and is sent to the server as the session's
  `application_name`.
- **Version Management**: The package version is read from the installed
  distribution metadata, with a fallback for local development.
"""

from importlib import metadata
from typing import Final

# SERVICE_NAME provides a canonical, unambiguous name for this worker.
SERVICE_NAME: Final[str] = "streaming_lag"

try:
    __version__ = metadata.version("streaming-lag")
except metadata.PackageNotFoundError:  # pragma: no cover
    # Fallback for local development when the package is not formally installed.
    __version__ = "0.0.0"

__all__ = ["SERVICE_NAME", "__version__"]
