"""Fleet management agent components: configuration, registration, checks, downloads and package updates."""

__version__ = "0.2.23"