from __future__ import annotations

import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from flask import current_app


class SyncFailureNotifier:
    """Best-effort email alerts about search index sync problems."""

    def __init__(self, app=None):
        self.app = app or current_app

    def is_configured(self) -> bool:
        return bool(self.app.config.get("SMTP_HOST") and self.app.config.get("SYNC_ALERT_EMAIL"))

    def notify_sync_failure(self, product_id, product_title, error_message) -> bool:
        title = product_title or "Unknown"
        subject = f"Product Sync Failed: {title}"
        rows = [
            ("Product ID", product_id),
            ("Product Title", title),
            ("Error", error_message),
            ("Timestamp", datetime.utcnow().isoformat()),
            ("Environment", os.environ.get("FLASK_ENV", "development")),
        ]
        return self._send(subject, "Product Elasticsearch Sync Failed", rows)

    def notify_bulk_sync(self, success: bool, details: dict) -> bool:
        subject = "Elasticsearch Sync Successful" if success else "Elasticsearch Sync Failed"
        rows = [
            ("Total Products", details.get("total", 0)),
            ("Synced Products", details.get("succeeded", 0)),
            ("Failed Products", details.get("failed", 0)),
        ]
        if details.get("error"):
            rows.insert(0, ("Error", details["error"]))
        if details.get("duration") is not None:
            rows.append(("Duration", f"{details['duration']:.1f}s"))
        rows.append(("Timestamp", datetime.utcnow().isoformat()))
        heading = "Elasticsearch Sync Completed Successfully" if success else "Elasticsearch Sync Failed"
        return self._send(subject, heading, rows)

    def _send(self, subject, heading, rows) -> bool:
        if not self.is_configured():
            self.app.logger.info("SMTP alerts are not configured, skipping '%s'", subject)
            return False
        config = self.app.config
        recipient = config["SYNC_ALERT_EMAIL"]
        sender = config.get("SMTP_FROM") or config.get("SMTP_USER") or recipient

        html_rows = "".join(
            f"<p><strong>{escape(str(label))}:</strong> {escape(str(value))}</p>" for label, value in rows
        )
        text_rows = "\n".join(f"{label}: {value}" for label, value in rows)
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = recipient
        message.attach(MIMEText(f"{heading}\n\n{text_rows}", "plain", "utf-8"))
        message.attach(MIMEText(f"<h2>{escape(heading)}</h2>{html_rows}", "html", "utf-8"))

        try:
            with smtplib.SMTP(config["SMTP_HOST"], int(config.get("SMTP_PORT", 587)), timeout=30) as server:
                if config.get("SMTP_USE_TLS", True):
                    server.starttls()
                if config.get("SMTP_USER") and config.get("SMTP_PASSWORD"):
                    server.login(config["SMTP_USER"], config["SMTP_PASSWORD"])
                server.sendmail(sender, [recipient], message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            self.app.logger.error("Failed to send '%s' notification: %s", subject, exc)
            return False
        self.app.logger.info("Notification '%s' sent to %s", subject, recipient)
        return True
