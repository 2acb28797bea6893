"""Exception types raised by graphslam.

Lookups that find nothing return None instead of raising; these exceptions
are reserved for programming errors.
"""


class GraphSLAMError(Exception):
    """Base class for graphslam errors."""


class HashIndexNotInitializedError(GraphSLAMError, RuntimeError):
    """Raised when fingerprinting before the hash index is initialized."""


class DescriptorDimensionError(GraphSLAMError, ValueError):
    """Raised when descriptors do not match the initialized hash layout."""
