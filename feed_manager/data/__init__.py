"""
Local state kept by the feed manager application.

This package is responsible for:
* Loading and persisting the user's feed settings.
* Tracking which package versions are selected for deletion.
* Reading the project list out of a solution file for packing.
"""
