"""Visual and availability monitoring for a fleet of store homepages."""

__version__ = "0.1.0"
