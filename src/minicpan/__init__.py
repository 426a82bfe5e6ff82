"""Build and update a minimal local mirror of CPAN."""

__version__ = "1.0.0"
