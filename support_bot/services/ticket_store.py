import secrets
import threading
import time
from contextlib import contextmanager

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from support_bot.database import SessionLocal, Ticket, User, utcnow
from support_bot.errors import StorageError, TicketNotFound, UserNotFound
from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import Attachment, TicketRecord, TicketStatus, UserRecord

logger = get_logger(__name__)

PROTOCOL_PREFIX = "CAR"
MAX_PROTOCOL_ATTEMPTS = 5


class ProtocolGenerator:
    """CAR + six digits of a strictly increasing millisecond clock + three random digits.

    The clock part never repeats inside one process (until it wraps every
    ~16 minutes), the random part separates processes opening in the same
    millisecond. The unique index on tickets.protocol is the backstop.
    """

    def __init__(self, prefix: str = PROTOCOL_PREFIX, clock=time.time):
        self.prefix = prefix
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            now = int(self._clock() * 1000)
            self._last = max(now, self._last + 1)
            tick = self._last
        return f"{self.prefix}{tick % 1_000_000:06d}{secrets.randbelow(1000):03d}"


class TicketStore:
    def __init__(self, session_factory=SessionLocal, protocol_generator=None):
        self._session_factory = session_factory
        self._next_protocol = protocol_generator or ProtocolGenerator()

    @contextmanager
    def _session(self):
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Database operation failed: {e}")
            raise StorageError(f"Storage unavailable: {e.__class__.__name__}") from e
        finally:
            session.close()

    def upsert_user(self, external_id: str, email: str | None = None, name: str | None = None) -> UserRecord:
        for attempt in range(2):
            try:
                with self._session() as db:
                    user = db.scalar(select(User).where(User.external_id == external_id))
                    if user is None:
                        user = User(external_id=external_id)
                        db.add(user)
                    if email is not None:
                        user.email = email
                    if name is not None:
                        user.display_name = name
                    db.commit()
                    return UserRecord.model_validate(user)
            except StorageError as e:
                # two first registrations racing on the unique external_id
                if attempt == 0 and isinstance(e.__cause__, IntegrityError):
                    continue
                raise

    def open_ticket(
        self,
        external_id: str,
        department: str,
        subject: str,
        description: str,
        attachments: list[Attachment] | None = None,
    ) -> TicketRecord:
        stored_attachments = [a.model_dump() for a in attachments or []]

        for attempt in range(1, MAX_PROTOCOL_ATTEMPTS + 1):
            protocol = self._next_protocol()
            try:
                with self._session() as db:
                    user = db.scalar(select(User).where(User.external_id == external_id))
                    if user is None:
                        raise UserNotFound(external_id)

                    ticket = Ticket(
                        protocol=protocol,
                        owner=user,
                        department=department,
                        subject=subject,
                        description=description,
                        attachments=stored_attachments,
                        status=TicketStatus.OPEN.value,
                        opened_at=utcnow(),
                    )
                    db.add(ticket)
                    db.commit()
                    logger.info(f"Ticket {protocol} opened for {external_id} ({department})")
                    return TicketRecord.model_validate(ticket)
            except StorageError as e:
                if isinstance(e.__cause__, IntegrityError) and attempt < MAX_PROTOCOL_ATTEMPTS:
                    logger.warning(f"Protocol {protocol} already taken, generating another one")
                    continue
                raise

    def list_open_tickets(self, external_id: str) -> list[TicketRecord]:
        with self._session() as db:
            rows = db.scalars(
                select(Ticket)
                .join(User)
                .where(User.external_id == external_id, Ticket.status != TicketStatus.CLOSED.value)
                .order_by(Ticket.opened_at.desc(), Ticket.id.desc())
            ).all()
            return [TicketRecord.model_validate(t) for t in rows]

    def get_ticket(self, protocol: str) -> TicketRecord:
        with self._session() as db:
            ticket = db.scalar(select(Ticket).where(Ticket.protocol == protocol))
            if ticket is None:
                raise TicketNotFound(protocol)
            return TicketRecord.model_validate(ticket)

    def close_ticket(self, protocol: str) -> tuple[TicketRecord, bool]:
        """Mark a ticket Closed.

        Returns the ticket and whether this call changed its status. Closing an
        already closed ticket keeps the original closed_at; of concurrent closes
        exactly one reports a change.
        """
        with self._session() as db:
            result = db.execute(
                update(Ticket)
                .where(Ticket.protocol == protocol, Ticket.status != TicketStatus.CLOSED.value)
                .values(status=TicketStatus.CLOSED.value, closed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            changed = result.rowcount == 1

            ticket = db.scalar(select(Ticket).where(Ticket.protocol == protocol))
            if ticket is None:
                raise TicketNotFound(protocol)
            if changed:
                logger.info(f"Ticket {protocol} closed")
            return TicketRecord.model_validate(ticket), changed
