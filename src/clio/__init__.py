"""clio - clipboard history watcher with selection sync and action rules."""

__version__ = "0.4.0"
