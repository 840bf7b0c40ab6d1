"""Email queue used by email nodes; a separate mailer drains it."""

from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import StorageError
from ..core.logging import get_logger
from ..storage.database import get_session
from ..storage.models import EmailQueueModel

logger = get_logger(__name__)


class EmailQueue:
    """Stores outgoing emails in the `email_queue` table."""

    def enqueue(self, to: str, subject: str, body: str) -> int:
        """
        Queue an email and return its queue id.

        Raises:
            ValueError: If the recipient is missing
            StorageError: If the row cannot be written
        """
        if not to:
            raise ValueError("Email recipient is empty")

        db = get_session()
        try:
            row = EmailQueueModel(to=to, subject=subject, body=body or "")
            db.add(row)
            db.commit()
            logger.info(f"Queued email {row.id} for {to}")
            return row.id
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to queue email: {e}", operation="enqueue", table="email_queue")
        finally:
            db.close()
