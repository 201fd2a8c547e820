"""Scoring engines: handicaps, the match event log and match state."""

from . import events, handicap, match_play

__all__ = [
    "events",
    "handicap",
    "match_play",
]
