"""
PartsConnect Match Alerter
Emails both parties of a new match, with WhatsApp deep links when a phone number is on file.
"""
from html import escape
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.models import Profile
from agents.delivery.channels import BaseChannel, whatsapp_link
from agents.delivery.models import (
    DeliveryChannel,
    DeliveryStatus,
    EmailContent,
    MatchDeliveryReport,
    MatchNotification,
    RecipientInfo,
)

logger = structlog.get_logger(__name__)

EMAIL_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .cta-button {{ display: inline-block; background: #4F46E5; color: white; padding: 12px 24px; border-radius: 6px; text-decoration: none; margin: 20px 0; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>New Match Found!</h1>
        <p>Hi {name},</p>
        {body}
        <p><a href="{matches_url}" class="cta-button">View Match</a></p>
        {whatsapp}
        <p>Best regards,<br>{team}</p>
    </div>
</body>
</html>
"""


class MatchAlerter:
    """
    Delivers one MatchNotification to both parties.

    Each party gets one email. A party without an email address is
    skipped; one failed email never blocks the other.
    """

    def __init__(
        self,
        session: AsyncSession,
        channel: BaseChannel,
        frontend_url: str,
        from_email: str,
        from_name: str,
    ):
        self.session = session
        self.channel = channel
        self.frontend_url = frontend_url.rstrip("/")
        self.from_email = from_email
        self.from_name = from_name
        self.logger = structlog.get_logger().bind(agent="match_alerter")

    async def _fetch_recipients(
        self, notice: MatchNotification
    ) -> tuple[Optional[RecipientInfo], Optional[RecipientInfo]]:
        """
        Load supplier and requester contact details.

        Raises:
            SQLAlchemyError: Profiles could not be read.
        """
        result = await self.session.execute(
            select(Profile).where(Profile.id.in_([notice.supplier_id, notice.requester_id]))
        )
        profiles = {p.id: p for p in result.scalars().all()}

        def to_recipient(profile_id: UUID) -> Optional[RecipientInfo]:
            profile = profiles.get(profile_id)
            if profile is None:
                return None
            return RecipientInfo(
                profile_id=profile.id,
                name=profile.full_name or "there",
                email=profile.email,
                phone=profile.phone_number,
            )

        return to_recipient(notice.supplier_id), to_recipient(notice.requester_id)

    def build_supplier_email(
        self,
        notice: MatchNotification,
        supplier: RecipientInfo,
        requester: RecipientInfo,
        whatsapp: Optional[str],
    ) -> EmailContent:
        """Email telling the supplier someone wants their part."""
        item = escape(notice.item_name)
        body = (
            f"<p>Good news! Someone is interested in your {notice.item_type}: "
            f"<strong>\"{item}\"</strong></p>\n"
            f"        <p>{escape(requester.name)} wants to connect with you about this {notice.item_type}.</p>"
        )
        return self._email(
            notice,
            recipient=supplier,
            subject=f'New Match: Someone wants "{notice.item_name}"!',
            body=body,
            text=(
                f"Someone is interested in your {notice.item_type}: \"{notice.item_name}\". "
                f"{requester.name} wants to connect with you."
            ),
            link=whatsapp,
        )

    def build_requester_email(
        self,
        notice: MatchNotification,
        requester: RecipientInfo,
        supplier: RecipientInfo,
        whatsapp: Optional[str],
    ) -> EmailContent:
        """Email telling the requester a supplier has the part."""
        item = escape(notice.item_name)
        body = (
            f"<p>Great news! We found a supplier for \"{item}\"</p>\n"
            f"        <p>{escape(supplier.name)} has the {notice.item_type} you're looking for.</p>"
        )
        return self._email(
            notice,
            recipient=requester,
            subject=f'New Match: We found "{notice.item_name}" for you!',
            body=body,
            text=f"We found a supplier for \"{notice.item_name}\". {supplier.name} has what you're looking for.",
            link=whatsapp,
        )

    def _email(
        self,
        notice: MatchNotification,
        recipient: RecipientInfo,
        subject: str,
        body: str,
        text: str,
        link: Optional[str],
    ) -> EmailContent:
        matches_url = f"{self.frontend_url}/matches"
        whatsapp = (
            f'<p>Or connect via WhatsApp: <a href="{escape(link)}">Click here to open WhatsApp</a></p>'
            if link
            else ""
        )
        body_text = f"Hi {recipient.name},\n\n{text}\n\nView match: {matches_url}\n"
        if link:
            body_text += f"WhatsApp: {link}\n"
        body_text += f"\n-- {self.from_name}"

        return EmailContent(
            subject=subject[:150],
            body_html=EMAIL_TEMPLATE.format(
                name=escape(recipient.name),
                body=body,
                matches_url=matches_url,
                whatsapp=whatsapp,
                team=escape(self.from_name),
            ),
            body_text=body_text,
            from_email=self.from_email,
            from_name=self.from_name,
            to_email=recipient.email,
            to_name=recipient.name,
            tracking_id=str(notice.match_id),
        )

    async def deliver(self, notice: MatchNotification) -> MatchDeliveryReport:
        """
        Send match emails to both parties.

        Args:
            notice: Match notice from the engine.

        Returns:
            MatchDeliveryReport with one DeliveryStatus per party.
        """
        log = self.logger.bind(match_id=str(notice.match_id))
        report = MatchDeliveryReport(match_id=notice.match_id)

        try:
            supplier, requester = await self._fetch_recipients(notice)
        except SQLAlchemyError as e:
            log.error("recipient_fetch_failed", error=str(e))
            raise

        if supplier is None or requester is None:
            log.error(
                "match_profiles_missing",
                supplier_found=supplier is not None,
                requester_found=requester is not None,
            )
            return report

        supplier_link = whatsapp_link(
            supplier.phone,
            f'Hi! I found a match for "{notice.item_name}" on {self.from_name}. '
            f"Someone is interested in your {notice.item_type}. Check your matches to connect!",
        )
        requester_link = whatsapp_link(
            requester.phone,
            f'Hi! I found a match for "{notice.item_name}" on {self.from_name}. '
            "A supplier has what you're looking for. Check your matches to connect!",
        )
        report.whatsapp_links = {"supplier": supplier_link, "requester": requester_link}

        outgoing = [
            (supplier, lambda: self.build_supplier_email(notice, supplier, requester, supplier_link)),
            (requester, lambda: self.build_requester_email(notice, requester, supplier, requester_link)),
        ]

        for recipient, build in outgoing:
            if not recipient.email:
                report.deliveries.append(
                    DeliveryStatus(
                        match_id=notice.match_id,
                        recipient_id=recipient.profile_id,
                        channel=DeliveryChannel.EMAIL,
                        status="skipped",
                        error_message="No email address on file",
                    )
                )
                continue
            status = await self.channel.send(build(), notice.match_id, recipient.profile_id)
            report.deliveries.append(status)

        log.info(
            "match_notification_delivered",
            sent=report.sent_count,
            attempted=len(report.deliveries),
        )
        return report
