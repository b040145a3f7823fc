from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .runtime import RunReport
from .settings import Settings


def send_email(settings: Settings, subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - SSR_ENABLE_EMAIL=true
      - SSR_SMTP_HOST / SSR_SMTP_PORT
      - SSR_SMTP_USER / SSR_SMTP_PASSWORD
      - SSR_EMAIL_FROM / SSR_EMAIL_TO
    """
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        return False

    msg = MIMEMultipart()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError):
        # Alerting never changes the outcome of a run.
        return False


def format_summary(report: RunReport) -> str:
    s = report.summary()
    lines = [f"Action: {s['action']}", f"Started: {s['started_at']}", f"Finished: {s['finished_at']}"]
    if s["fatal"]:
        lines.append(f"Aborted: {s['fatal']}")
    for f in s["failures"]:
        detail = f"{f['service']} [{f['stage']}]: {f['message']}"
        if f["exit_code"] is not None:
            detail += f" (exit {f['exit_code']})"
        lines.append(detail)
        if f["output"]:
            lines.append(f"    {f['output']}")
    return "\n".join(lines)


def send_summary(settings: Settings, report: RunReport) -> bool:
    failed = report.failed_services()
    subject = f"SSR {report.action} on {settings.ssh_host}: " + (
        "aborted" if report.fatal else f"{len(failed)} service(s) failed"
    )
    return send_email(settings, subject, format_summary(report))
