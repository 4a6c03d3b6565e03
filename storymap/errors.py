"""
Error types raised by the storymap pipeline.

Every stage raises a subclass of RegionMapError so the CLI can report
pipeline failures without catching unrelated exceptions.
"""


class RegionMapError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(RegionMapError):
    """Configuration file missing, unreadable, or incomplete."""


class DataLoadError(RegionMapError):
    """An input dataset is missing, unreadable, or lacks expected columns."""


class DuplicateRegionError(RegionMapError):
    """More than one polygon shares a region code after filtering."""

    def __init__(self, codes):
        self.codes = sorted(codes)
        super().__init__(f"Duplicate region codes in polygon set: {self.codes}")


class ValueParseError(RegionMapError):
    """A metric value could not be converted to a number."""

    def __init__(self, message: str, token=None, column=None):
        self.token = token
        self.column = column
        super().__init__(message)


class ReprojectionError(RegionMapError):
    """Coordinate transform failed or the reference system is unknown."""


class MapBuildError(RegionMapError):
    """MapBuilder misuse, e.g. adding layers after the map was built."""
