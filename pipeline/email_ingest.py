"""
Email ingestion for customer inquiries and purchase orders.

Polls an IMAP mailbox, sorts matching messages by subject and saves their
PDF / image attachments under INBOX_DIR/<schema>/ for DocumentProcessor to
ingest:

  po        subject mentions "PO" or "Purchase Order"
  inquiry   subject mentions an inquiry, RFQ, quotation or request

Messages whose subject matches neither are left untouched (not even marked
as read).
"""
import email
import imaplib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from email import policy
from email.message import Message
from pathlib import Path
from typing import Any, Optional

from .errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

ATTACHMENT_SUFFIXES = (".pdf", ".png", ".jpg", ".jpeg", ".webp")

# Checked in order: a "PO against your quotation" mail is a PO
_SUBJECT_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("po",      re.compile(r"\bp\.?o\b|purchase\s+order", re.IGNORECASE)),
    ("inquiry", re.compile(r"inquiry|enquiry|\brfq\b|quotation|request", re.IGNORECASE)),
]


def classify_subject(subject: str) -> Optional[str]:
    """Schema tag for an email subject, or None if it is neither a PO nor an inquiry."""
    for schema, pattern in _SUBJECT_PATTERNS:
        if pattern.search(subject or ""):
            return schema
    return None


@dataclass
class InboxAttachment:
    """One saved attachment and the message it came from."""
    path: Path
    schema: str
    subject: str
    sender: str


class EmailIngestService:
    """
    Polls an IMAP mailbox for inquiry and PO emails with attachments.
    """

    def __init__(self, config: Any, inbox_dir: Optional[Path] = None) -> None:
        self.config = config
        self.inbox_dir = Path(inbox_dir or config.inbox_dir)

    def _connect(self) -> imaplib.IMAP4:
        if self.config.email_use_ssl:
            return imaplib.IMAP4_SSL(self.config.email_imap_host, self.config.email_imap_port)
        return imaplib.IMAP4(self.config.email_imap_host, self.config.email_imap_port)

    def poll_mailbox(self, schemas: tuple[str, ...] = ("inquiry", "po")) -> list[InboxAttachment]:
        """
        Download attachments from new messages whose subject matches one of
        *schemas*.

        Raises ExternalServiceFailure when the mailbox is not configured or
        cannot be reached.  A message that fails to download is logged and
        left for the next poll.
        """
        if not self.config.email_imap_host or not self.config.email_imap_user:
            raise ExternalServiceFailure(
                "Email ingestion is not configured: set EMAIL_IMAP_HOST and EMAIL_IMAP_USER"
            )

        logger.info("Polling mailbox %s for %s emails...", self.config.email_imap_user, "/".join(schemas))
        saved: list[InboxAttachment] = []
        mail = None

        try:
            mail = self._connect()
            mail.login(self.config.email_imap_user, self.config.email_imap_password)

            mailbox_name = (self.config.email_mailbox or "INBOX").strip() or "INBOX"
            status, _ = mail.select(f'"{mailbox_name}"')
            if status != "OK":
                raise ExternalServiceFailure(f"Failed to select mailbox {mailbox_name!r}")

            criteria = self.config.email_search_criteria or "UNSEEN"
            # 'ALL' without a folder to move messages into would re-read them every poll
            if criteria == "ALL" and not self.config.email_processed_mailbox:
                logger.warning(
                    "Email search criteria 'ALL' needs a processed mailbox; using 'UNSEEN'"
                )
                criteria = "UNSEEN"

            status, data = mail.search(None, criteria)
            if status != "OK":
                raise ExternalServiceFailure(f"IMAP search failed with criteria {criteria!r}")

            mail_ids = data[0].split()
            if not mail_ids:
                logger.debug("No emails matching '%s'", criteria)
                return []
            logger.info("Found %d email(s) matching '%s'", len(mail_ids), criteria)

            moved = False
            for m_id in mail_ids:
                try:
                    # PEEK leaves unrelated mail unread
                    status, msg_data = mail.fetch(m_id, "(BODY.PEEK[])")
                    if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
                        logger.warning("Could not fetch email ID %s", m_id)
                        continue
                    msg = email.message_from_bytes(msg_data[0][1], policy=policy.default)

                    subject = str(msg.get("Subject", ""))
                    schema = classify_subject(subject)
                    if schema not in schemas:
                        logger.debug("Skipping email ID %s: %r", m_id, subject)
                        continue

                    attachments = self._extract_attachments(msg, schema)
                    saved.extend(attachments)
                    if not attachments:
                        logger.info("Email %r (%s) has no PDF or image attachment", subject, schema)

                    if self._mark_processed(mail, m_id):
                        moved = True
                except (imaplib.IMAP4.error, OSError) as e:
                    logger.error("Error processing email ID %s: %s", m_id, e)

            if moved:
                mail.expunge()

        except (imaplib.IMAP4.error, OSError) as e:
            raise ExternalServiceFailure(f"IMAP polling failed: {e}") from e
        finally:
            if mail is not None:
                try:
                    mail.logout()
                except (imaplib.IMAP4.error, OSError) as e:
                    logger.debug("IMAP logout failed: %s", e)

        if saved:
            logger.info("Email poll complete: %d attachment(s) saved to %s", len(saved), self.inbox_dir)
        return saved

    def _mark_processed(self, mail: imaplib.IMAP4, m_id: bytes) -> bool:
        """Move the message to the processed mailbox, or mark it read.  True if moved."""
        dest_folder = (self.config.email_processed_mailbox or "").strip()
        if not dest_folder:
            mail.store(m_id, "+FLAGS", r"\Seen")
            return False

        res, _ = mail.copy(m_id, f'"{dest_folder}"')
        if res != "OK":
            logger.error("Failed to move email ID %s to %s", m_id, dest_folder)
            mail.store(m_id, "+FLAGS", r"\Seen")
            return False
        mail.store(m_id, "+FLAGS", r"\Deleted")
        logger.debug("Moved email ID %s to %s", m_id, dest_folder)
        return True

    def _extract_attachments(self, msg: Message, schema: str) -> list[InboxAttachment]:
        """Save every PDF / image attachment of *msg* under inbox_dir/<schema>/."""
        target_dir = self.inbox_dir / schema
        target_dir.mkdir(parents=True, exist_ok=True)
        subject = str(msg.get("Subject", ""))
        sender = str(msg.get("From", ""))

        saved = []
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            filename = part.get_filename()
            if not filename or not filename.lower().endswith(ATTACHMENT_SUFFIXES):
                continue

            clean_name = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
            # Timestamp prefix keeps same-named attachments apart
            ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            save_path = target_dir / f"email_{ts}_{clean_name}"

            payload = part.get_payload(decode=True)
            if not payload:
                logger.warning("Attachment %s in %r is empty", filename, subject)
                continue
            save_path.write_bytes(payload)
            logger.info("Saved %s attachment from email: %s", schema, clean_name)
            saved.append(InboxAttachment(path=save_path, schema=schema, subject=subject, sender=sender))
        return saved
