"""Alert message formatter.

This module turns AnomalyAlert objects into human-readable messages for
plain text channels and Telegram, with Solana explorer links.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from solana_tx_monitor.alerter.models import FormattedAlert
from solana_tx_monitor.detector.models import AlertType, AnomalyAlert, Severity

SOLSCAN_ACCOUNT_URL = "https://solscan.io/account/{address}"
SOLSCAN_TX_URL = "https://solscan.io/tx/{signature}"

SEVERITY_ICONS = {
    Severity.LOW: "🟡",
    Severity.MEDIUM: "🟠",
    Severity.HIGH: "🔴",
    Severity.CRITICAL: "🚨",
}

ALERT_NAMES = {
    AlertType.HIGH_FREQUENCY: "High Frequency",
    AlertType.LARGE_AMOUNT: "Large Amount",
    AlertType.SUSPICIOUS_RECIPIENT: "Suspicious Recipient",
    AlertType.FAILED_PATTERN: "Failed Pattern",
}

_TELEGRAM_SPECIAL = "_*[]()~`>#+-=|{}.!"


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate a base58 address or signature to ``AbCd...WxYz`` format."""
    if len(address) < chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_sol(amount: Decimal) -> str:
    """Format a SOL amount with commas and up to 4 decimal places."""
    text = f"{amount:,.4f}".rstrip("0").rstrip(".")
    return f"{text} SOL"


def escape_telegram_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    return "".join(f"\\{c}" if c in _TELEGRAM_SPECIAL else c for c in text)


def _format_value(key: str, value: Any) -> str:
    if isinstance(value, Decimal):
        return format_sol(value)
    if key in ("recipient", "signature") and isinstance(value, str):
        return truncate_address(value)
    return str(value)


class AlertFormatter:
    """Formats AnomalyAlerts into channel-specific messages.

    Supports two verbosity levels:
    - compact: rule, severity and actor only
    - detailed: every measured value plus explorer links
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "detailed",
    ) -> None:
        self.verbosity = verbosity

    def format(self, alert: AnomalyAlert) -> FormattedAlert:
        """Format an anomaly alert.

        Args:
            alert: The alert to format.

        Returns:
            FormattedAlert with all renderings.
        """
        name = ALERT_NAMES.get(alert.type, alert.type.value)
        severity = alert.severity.value.upper()
        actor_short = truncate_address(alert.actor_id)
        links = self._build_links(alert)

        title = f"{SEVERITY_ICONS[alert.severity]} {name} - {severity}"
        body = self._build_body(alert, actor_short, severity)

        return FormattedAlert(
            title=title,
            body=body,
            telegram_markdown=self._build_telegram_markdown(alert, name, actor_short, severity, links),
            plain_text=self._build_plain_text(alert, name, actor_short, severity, links),
            links=links,
        )

    def _build_links(self, alert: AnomalyAlert) -> dict[str, str]:
        links = {"actor": SOLSCAN_ACCOUNT_URL.format(address=alert.actor_id)}
        signature = alert.data.get("signature")
        if isinstance(signature, str):
            links["transaction"] = SOLSCAN_TX_URL.format(signature=signature)
        recipient = alert.data.get("recipient")
        if isinstance(recipient, str):
            links["recipient"] = SOLSCAN_ACCOUNT_URL.format(address=recipient)
        return links

    def _build_body(self, alert: AnomalyAlert, actor_short: str, severity: str) -> str:
        if self.verbosity == "compact":
            return f"Actor {actor_short}: {alert.description} ({severity})"

        lines = [
            f"Actor: {actor_short}",
            f"Severity: {severity}",
            alert.description,
        ]
        details = self._details(alert)
        if details:
            lines.append(f"Details: {details}")
        return "\n".join(lines)

    def _details(self, alert: AnomalyAlert) -> str:
        return ", ".join(f"{k}={_format_value(k, v)}" for k, v in alert.data.items())

    def _build_telegram_markdown(
        self,
        alert: AnomalyAlert,
        name: str,
        actor_short: str,
        severity: str,
        links: dict[str, str],
    ) -> str:
        lines = [
            f"{SEVERITY_ICONS[alert.severity]} *{escape_telegram_markdown(name)}*",
            "",
            f"*Actor:* `{actor_short}`",
            f"*Severity:* {severity}",
            escape_telegram_markdown(alert.description),
        ]

        if self.verbosity == "detailed":
            details = self._details(alert)
            if details:
                lines.append(f"*Details:* {escape_telegram_markdown(details)}")
            lines.append("")
            if "actor" in links:
                lines.append(f"[View Actor]({links['actor']})")
            if "transaction" in links:
                lines.append(f"[View Transaction]({links['transaction']})")
            if "recipient" in links:
                lines.append(f"[View Recipient]({links['recipient']})")

        return "\n".join(lines)

    def _build_plain_text(
        self,
        alert: AnomalyAlert,
        name: str,
        actor_short: str,
        severity: str,
        links: dict[str, str],
    ) -> str:
        lines = [
            f"ANOMALY: {name.upper()}",
            "=" * 30,
            "",
            f"Actor: {actor_short}",
            f"Severity: {severity}",
            f"Time: {alert.timestamp.isoformat()}",
            alert.description,
        ]

        if self.verbosity == "detailed":
            details = self._details(alert)
            if details:
                lines.append(f"Details: {details}")
            lines.append("")
            for label, url in links.items():
                lines.append(f"{label.capitalize()}: {url}")

        return "\n".join(lines)
