import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from support_bot.database import Base, make_engine
from support_bot.errors import NotificationError
from support_bot.services.departments import DepartmentDirectory
from support_bot.services.notifier import Notifier
from support_bot.services.sheets_mirror import TicketMirror
from support_bot.services.ticket_store import TicketStore
from support_bot.services.tools import SupportTools, ToolDispatcher


class RecordingMirror(TicketMirror):
    def __init__(self):
        self.rows = []
        self.statuses = []
        self.raise_on_append = None

    def append_ticket_row(self, ticket):
        if self.raise_on_append is not None:
            raise self.raise_on_append
        self.rows.append(ticket)

    def update_status_cell(self, protocol, new_status):
        self.statuses.append((protocol, new_status))


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html):
        if self.fail:
            raise NotificationError("smtp down")
        self.sent.append((to, subject, html))


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return TicketStore(session_factory)


@pytest.fixture
def file_store(tmp_path):
    """Store on a file-backed SQLite database, one pooled connection per thread."""
    engine = make_engine(
        f"sqlite:///{tmp_path / 'tickets.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield TicketStore(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))
    engine.dispose()


@pytest.fixture
def mirror():
    return RecordingMirror()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tools(store, mirror, notifier):
    return SupportTools(store, DepartmentDirectory(), mirror, notifier)


@pytest.fixture
def dispatcher(tools):
    return ToolDispatcher(tools)
