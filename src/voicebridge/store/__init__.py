"""Persistent storage for voicebridge transcripts."""

from voicebridge.store.transcript_log import TranscriptEntry, TranscriptLog

__all__ = ["TranscriptEntry", "TranscriptLog"]
