"""Transcript Export -- CSV export of recorded agent dialogue sessions.

Fetches session transcripts from an upstream transcript service, flattens
every dialogue turn into a fixed 16-column CSV row, and packages the
result as a ZIP archive.
"""

__version__ = "0.3.0"
