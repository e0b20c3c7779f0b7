"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    CONNECTION_ERROR = 2
    SEED_ERROR = 3


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    DEFAULT_HOST = "0.0.0.0"
    DEFAULT_PORT = 4873
    DEFAULT_UPSTREAM = "https://registry.npmjs.org"
    ENV_PORT = "PORT"
    ENV_UPSTREAM = "npm_config_registry"
    ENV_LOG_LEVEL = "NPM_OVERLAY_LOG_LEVEL"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for outbound HTTP requests
    USER_AGENT = "npm-overlay/1.0"

    # Layout of an npm package tarball
    MANIFEST_FILE = "package.json"
    READ_CHUNK_SIZE = 64 * 1024

    CONTENT_TYPE_JSON = "application/json"
    CONTENT_TYPE_TARBALL = "application/octet"
