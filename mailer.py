"""
Broadcast email to registrants.

Recipients resolve from "all", a single literal address, or committee
codes. Messages go out one at a time through a single verified SMTP
connection; each recipient's outcome is tallied and one failure never
stops the rest.
"""
import logging
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from typing import Callable, Dict, List, Optional, Sequence, Union

import aiosmtplib

import config
from errors import ConfigurationError, UpstreamError, ValidationError
from repository import RegistrationRepository, is_complete

logger = logging.getLogger(__name__)

_HEADER = """
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="background: linear-gradient(135deg, #172d9d 0%, #797dfa 100%); color: white; padding: 30px; text-align: center;">
          <h1 style="margin: 0; font-size: 28px;">{{eventName}}</h1>
          <p style="margin: 10px 0 0 0; font-size: 16px;">{{tagline}}</p>
        </div>
        <div style="padding: 30px; background: #ffffff;">"""
_FOOTER = """
        </div>
      </div>"""

EMAIL_TEMPLATES: Dict[str, Dict[str, str]] = {
    "welcome": {
        "subject": "Welcome to {{eventName}} Executive Board Recruitment",
        "tagline": "Executive Board Recruitment",
        "html": _HEADER + """
          <h2 style="color: #172d9d; margin-bottom: 20px;">Welcome {{name}}!</h2>
          <p style="line-height: 1.6; color: #333;">Thank you for your interest in joining the {{eventName}} Executive Board. We have received your application and our team will review it carefully.</p>
          <p style="line-height: 1.6; color: #333;">We will get back to you soon with updates on your application status.</p>
          <div style="background: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">
            <h3 style="color: #172d9d; margin-top: 0;">Application Summary:</h3>
            <ul style="color: #666;">
              <li>Committee Preferences: {{committees}}</li>
              <li>Position Preferences: {{positions}}</li>
              <li>Submitted: {{submittedAt}}</li>
            </ul>
          </div>
          <p style="line-height: 1.6; color: #333;">Best regards,<br>{{eventName}} Organizing Team</p>""" + _FOOTER,
    },
    "status_update": {
        "subject": "{{eventName}} Application Status Update",
        "tagline": "Application Status Update",
        "html": _HEADER + """
          <h2 style="color: #172d9d; margin-bottom: 20px;">Hello {{name}},</h2>
          <p style="line-height: 1.6; color: #333;">We have an update regarding your {{eventName}} Executive Board application.</p>
          <div style="background: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">
            <p style="font-size: 16px; color: #172d9d; font-weight: bold; margin: 0;">{{message}}</p>
          </div>
          <p style="line-height: 1.6; color: #333;">If you have any questions, please don't hesitate to contact us.</p>
          <p style="line-height: 1.6; color: #333;">Best regards,<br>{{eventName}} Organizing Team</p>""" + _FOOTER,
    },
    "custom": {
        "subject": "{{subject}}",
        "tagline": "Executive Board Recruitment",
        "html": _HEADER + """
          {{message}}""" + _FOOTER,
    },
}


def render_template(template: str, variables: Dict[str, object]) -> str:
    """Replace each `{{key}}` in declaration order; None renders as ''."""
    result = template
    for key, value in variables.items():
        result = result.replace("{{" + key + "}}", "" if value is None else str(value))
    return result


def _joined(value) -> str:
    if not value:
        return "N/A"
    return ", ".join(value) if isinstance(value, list) else str(value)


def _display_date(iso_value: Optional[str]) -> str:
    if not iso_value:
        return "N/A"
    try:
        return datetime.fromisoformat(iso_value.replace("Z", "+00:00")).strftime("%d %b %Y")
    except ValueError:
        return iso_value


def template_variables(email: str, registration: Optional[dict], subject: str = "", message: str = "",
                       tagline: str = "") -> Dict[str, object]:
    registration = registration or {}
    return {
        "eventName": config.EVENT_NAME,
        "tagline": tagline,
        "name": registration.get("name") or "Applicant",
        "email": email,
        "subject": subject,
        "message": message,
        "committees": _joined(registration.get("committees")),
        "positions": _joined(registration.get("positions")),
        "submittedAt": _display_date(registration.get("submittedAt")),
    }


async def resolve_recipients(repository: RegistrationRepository, recipients: Union[Sequence[str], str]) -> List[str]:
    """
    Expand recipient tokens into addresses.

    "all" wins over everything else; a single token containing "@" is a
    literal address; otherwise each token is a committee code. Registrations
    still missing their idCard are skipped. Duplicates are kept.
    """
    tokens = [recipients] if isinstance(recipients, str) else list(recipients or [])

    if "all" in tokens:
        records = await repository.list("submittedAt", "desc")
        return [r["email"] for r in records if r.get("email") and is_complete(r)]

    if len(tokens) == 1 and "@" in tokens[0]:
        return [tokens[0].strip()]

    emails = []
    for code in tokens:
        for record in await repository.query("committees", code.strip().upper()):
            if record.get("email") and is_complete(record):
                emails.append(record["email"])
    return emails


class SmtpTransport:
    """One aiosmtplib connection: implicit TLS on 465, STARTTLS on 587."""

    def __init__(self, settings: dict):
        self.settings = settings
        port = int(settings.get("port") or 587)
        self.smtp = aiosmtplib.SMTP(
            hostname=settings.get("host"),
            port=port,
            timeout=settings.get("timeout", config.SMTP_TIMEOUT),
            use_tls=port == 465,
            start_tls=True if port == 587 else None,
        )

    @property
    def sender(self) -> str:
        return self.settings.get("username") or ""

    async def verify(self) -> None:
        await self.smtp.connect()
        if self.settings.get("username") and self.settings.get("password"):
            await self.smtp.login(self.settings["username"], self.settings["password"])

    async def send(self, message: EmailMessage) -> None:
        await self.smtp.send_message(message)

    async def close(self) -> None:
        if self.smtp.is_connected:
            try:
                await self.smtp.quit()
            except aiosmtplib.SMTPException as e:
                logger.warning(f"SMTP quit failed: {e}")


class Mailer:
    def __init__(self, repository: RegistrationRepository,
                 transport_factory: Callable[[dict], SmtpTransport] = SmtpTransport,
                 providers: Optional[Dict[str, dict]] = None):
        self.repository = repository
        self.transport_factory = transport_factory
        self.providers = providers if providers is not None else config.smtp_providers()

    async def _connect(self, provider: str) -> SmtpTransport:
        settings = self.providers.get(provider)
        if settings is None:
            raise ConfigurationError(f"Unsupported email provider: {provider}")
        transport = self.transport_factory(settings)
        try:
            await transport.verify()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP verification failed for {provider}: {e}")
            await transport.close()
            raise ConfigurationError(f"Email configuration error for {provider}. Please check SMTP settings.")
        return transport

    def compose(self, transport: SmtpTransport, to: str, subject: str, html: str,
                cc: Sequence[str] = (), bcc: Sequence[str] = ()) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((config.SMTP_SENDER_NAME, transport.sender))
        message["To"] = to
        if cc:
            message["Cc"] = ", ".join(cc)
        if bcc:
            message["Bcc"] = ", ".join(bcc)
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable email client.")
        message.add_alternative(html, subtype="html")
        return message

    async def _personal_record(self, email: str) -> Optional[dict]:
        matches = await self.repository.query("email", email.lower())
        return matches[0] if matches else None

    async def broadcast(self, recipients, subject: str, message: str, template: str = "custom",
                        provider: str = config.DEFAULT_SMTP_PROVIDER,
                        cc: Sequence[str] = (), bcc: Sequence[str] = ()) -> dict:
        """
        Send a templated message to every resolved recipient.

        Returns:
            {"sent": n, "failed": n, "errors": ["address: reason", ...]}

        Raises:
            ValidationError: missing subject/message or no recipients
            ConfigurationError: unknown provider or failed SMTP verify;
                nothing was sent
        """
        if not recipients:
            raise ValidationError("Recipients are required")
        if not subject or not message:
            raise ValidationError("Subject and message are required")

        addresses = await resolve_recipients(self.repository, recipients)
        if not addresses:
            raise ValidationError("No valid recipients found")

        email_template = EMAIL_TEMPLATES.get(template, EMAIL_TEMPLATES["custom"])
        transport = await self._connect(provider)
        results = {"sent": 0, "failed": 0, "errors": []}
        try:
            for address in addresses:
                try:
                    registration = await self._personal_record(address)
                    variables = template_variables(address, registration, subject, message, email_template["tagline"])
                    await transport.send(self.compose(
                        transport,
                        address,
                        render_template(email_template["subject"], variables),
                        render_template(email_template["html"], variables),
                        cc,
                        bcc,
                    ))
                    results["sent"] += 1
                except (aiosmtplib.SMTPException, OSError, ValueError, UpstreamError) as e:
                    logger.error(f"Failed to send email to {address}: {e}")
                    results["failed"] += 1
                    results["errors"].append(f"{address}: {e}")
        finally:
            await transport.close()

        logger.info(f"Broadcast via {provider}: sent {results['sent']}, failed {results['failed']}")
        return results

    async def send_welcome(self, registration_ids: Sequence[str],
                           provider: str = config.DEFAULT_SMTP_PROVIDER) -> dict:
        if not registration_ids:
            raise ValidationError("Registration IDs are required")

        template = EMAIL_TEMPLATES["welcome"]
        transport = await self._connect(provider)
        results = {"sent": 0, "failed": 0, "errors": []}
        try:
            for registration_id in registration_ids:
                try:
                    registration = await self.repository.get(registration_id)
                except UpstreamError as e:
                    logger.error(f"Failed to load registration {registration_id} for welcome email: {e}")
                    results["failed"] += 1
                    results["errors"].append(f"Error processing {registration_id}: {e.message}")
                    continue
                if registration is None:
                    results["failed"] += 1
                    results["errors"].append(f"Registration {registration_id} not found")
                    continue
                variables = template_variables(registration["email"], registration, tagline=template["tagline"])
                try:
                    await transport.send(self.compose(
                        transport,
                        registration["email"],
                        render_template(template["subject"], variables),
                        render_template(template["html"], variables),
                    ))
                    results["sent"] += 1
                except (aiosmtplib.SMTPException, OSError, ValueError) as e:
                    logger.error(f"Failed to send welcome email for {registration_id}: {e}")
                    results["failed"] += 1
                    results["errors"].append(f"{registration_id}: {e}")
        finally:
            await transport.close()
        return results

    async def send_test(self, provider: str, test_email: Optional[str]) -> None:
        if not test_email:
            raise ValidationError("Test email address is required")
        transport = await self._connect(provider)
        html = (
            '<div style="font-family: Arial, sans-serif; padding: 20px;">'
            '<h2 style="color: #172d9d;">Email Configuration Test</h2>'
            "<p>This is a test email to verify your SMTP configuration.</p>"
            f"<p><strong>Provider:</strong> {provider}</p>"
            f"<p><strong>Sent at:</strong> {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}</p>"
            "</div>"
        )
        try:
            await transport.send(self.compose(transport, test_email, f"{config.EVENT_NAME} Email Configuration Test", html))
        except (aiosmtplib.SMTPException, OSError) as e:
            raise ConfigurationError(f"SMTP test failed: {e}")
        finally:
            await transport.close()

    def describe(self) -> dict:
        return {"templates": list(EMAIL_TEMPLATES), "smtpProviders": list(self.providers)}
