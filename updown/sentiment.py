"""External news/sentiment classifier.

The classifier is an out-of-process collaborator. It is either a shell
command printing a JSON object (possibly surrounded by log noise) or a JSON
file refreshed by something else. Either way the result is keyed by asset::

    {"BTC": {"sentiment": "bullish", "confidence": 0.7,
             "breaking_news": false, "summary": "..."}}
"""
from __future__ import annotations

import json
import logging
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class AssetSentiment:
    sentiment: str = "neutral"      # "bullish" | "bearish" | "neutral"
    confidence: float = 0.5
    breaking_news: bool = False
    summary: str = ""

    def describe(self) -> str:
        parts = [self.sentiment or "neutral", f"({self.confidence * 100:.0f}%)"]
        if self.breaking_news:
            parts.append("BREAKING")
        if self.summary:
            parts.append(self.summary)
        return " ".join(parts)


def parse_sentiment(raw: dict) -> dict[str, AssetSentiment]:
    out: dict[str, AssetSentiment] = {}
    for asset, entry in (raw or {}).items():
        if not isinstance(entry, dict):
            continue
        try:
            conf = float(entry.get("confidence") or 0.5)
        except (TypeError, ValueError):
            conf = 0.5
        out[str(asset).upper()] = AssetSentiment(
            sentiment=str(entry.get("sentiment") or "neutral").lower(),
            confidence=conf,
            breaking_news=bool(entry.get("breaking_news")),
            summary=str(entry.get("summary") or ""),
        )
    return out


def extract_json(output: str) -> dict:
    match = _JSON_BLOCK.search(output or "")
    if not match:
        return {}
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


class SentimentSource:
    """Reads the classifier once per cycle. Any failure yields no sentiment."""

    def __init__(self, command: str = "", path: str = "", timeout_s: float = 45.0):
        self.command = command
        self.path = Path(path) if path else None
        self.timeout_s = timeout_s

    def fetch(self) -> dict[str, AssetSentiment]:
        if self.command:
            return parse_sentiment(self._run_command())
        if self.path is not None:
            return parse_sentiment(self._read_file())
        return {}

    def _run_command(self) -> dict:
        try:
            proc = subprocess.run(
                shlex.split(self.command),
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log.warning("Sentiment classifier unavailable: %s", exc)
            return {}
        if proc.returncode != 0:
            log.warning("Sentiment classifier exited %d", proc.returncode)
        return extract_json(proc.stdout)

    def _read_file(self) -> dict:
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Sentiment file unreadable: %s", exc)
            return {}
        return data if isinstance(data, dict) else {}
