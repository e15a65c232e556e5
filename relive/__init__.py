"""RE:LIVE turns a short personal story and a few photos into an illustrated webtoon."""

__version__ = "0.1.0"
