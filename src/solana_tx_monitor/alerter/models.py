"""Data models for alert delivery."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FormattedAlert:
    """An anomaly alert rendered for human consumption.

    Attributes:
        title: One-line summary.
        body: Short description with the measured values.
        telegram_markdown: MarkdownV2 rendering for chat channels.
        plain_text: Plain rendering for logs and generic channels.
        links: Explorer links keyed by what they point at.
    """

    title: str
    body: str
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)
