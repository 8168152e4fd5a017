"""
Scribe - meeting audio transcription and summarization pipeline.
"""

__version__ = "1.0.0"
