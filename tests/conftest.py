import os
import re
import tempfile
import time

_TMP_DIR = tempfile.mkdtemp(prefix="fileuploader-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/test.db"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["PUBLIC_DIR"] = os.path.join(_TMP_DIR, "public")
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["GOOGLE_PICKER_API_KEY"] = "test-picker-key"

import httplib2
import pytest
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError

import main
from auth import create_session_token
from database import AsyncSessionLocal, create_db_and_tables, drop_db_and_tables
from models import Account, Form, User
from services import drive_service


def http_error(status, message):
    resp = httplib2.Response({"status": str(status)})
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode()
    return HttpError(resp, content)


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeDrive:
    """In-memory stand-in for the Drive v3 service object."""

    def __init__(self):
        self.items = []
        self.permissions_granted = []
        self.list_queries = []
        self.permission_error = None
        self.list_error = None
        self._next_id = 0

    def _new_id(self, prefix):
        self._next_id += 1
        return "%s-%d" % (prefix, self._next_id)

    def add_folder(self, name, parent=None):
        folder = {
            "id": self._new_id("folder"), "name": name,
            "mimeType": drive_service.FOLDER_MIME_TYPE,
            "parents": [parent] if parent else [], "trashed": False,
        }
        self.items.append(folder)
        return folder["id"]

    def folders(self, name=None):
        return [i for i in self.items
                if i["mimeType"] == drive_service.FOLDER_MIME_TYPE and (name is None or i["name"] == name)]

    def uploaded_files(self):
        return [i for i in self.items if i["mimeType"] != drive_service.FOLDER_MIME_TYPE]

    def files(self):
        return self

    def permissions(self):
        return _FakePermissions(self)

    def list(self, q, **kwargs):
        self.list_queries.append(q)

        def run():
            if self.list_error is not None:
                raise self.list_error
            name = re.search(r"name = '((?:[^'\\]|\\.)*)'", q).group(1)
            name = re.sub(r"\\(.)", r"\1", name)
            parent = re.search(r"'([^']+)' in parents", q)
            matches = [
                i for i in self.folders(name)
                if not i["trashed"] and (parent is None or parent.group(1) in i["parents"])
            ]
            return {"files": [{"id": i["id"]} for i in matches]}
        return _Request(run)

    def create(self, body, media_body=None, **kwargs):
        def run():
            if body.get("mimeType") == drive_service.FOLDER_MIME_TYPE:
                return {"id": self.add_folder(body["name"], (body.get("parents") or [None])[0])}
            item = {
                "id": self._new_id("file"), "name": body["name"],
                "mimeType": media_body.mimetype(), "parents": body.get("parents", []),
                "trashed": False, "content": media_body.getbytes(0, media_body.size()),
            }
            self.items.append(item)
            return {"id": item["id"], "webViewLink": drive_service.view_url(item["id"])}
        return _Request(run)


class _FakePermissions:
    def __init__(self, drive):
        self.drive = drive

    def create(self, fileId, body, **kwargs):
        def run():
            if self.drive.permission_error is not None:
                raise self.drive.permission_error
            self.drive.permissions_granted.append((fileId, body))
            return {"id": "perm-%s" % fileId}
        return _Request(run)


class FakeSheets:
    """In-memory stand-in for the Sheets v4 service object."""

    def __init__(self):
        self.created = []
        self.batch_updates = []
        self.value_batch_updates = []
        self.value_updates = []
        self.create_error = None
        self.value_update_error = None

    def spreadsheets(self):
        return self

    def values(self):
        return _FakeValues(self)

    def create(self, body):
        def run():
            if self.create_error is not None:
                raise self.create_error
            self.created.append(body)
            return {"spreadsheetId": "sheet-%d" % len(self.created)}
        return _Request(run)

    def batchUpdate(self, spreadsheetId, body):
        def run():
            self.batch_updates.append((spreadsheetId, body))
            return {}
        return _Request(run)


class _FakeValues:
    def __init__(self, sheets):
        self.sheets = sheets

    def batchUpdate(self, spreadsheetId, body):
        def run():
            self.sheets.value_batch_updates.append((spreadsheetId, body))
            return {}
        return _Request(run)

    def update(self, spreadsheetId, range, valueInputOption, body):
        def run():
            if self.sheets.value_update_error is not None:
                raise self.sheets.value_update_error
            self.sheets.value_updates.append((spreadsheetId, range, valueInputOption, body))
            return {}
        return _Request(run)


class FakeSession:
    """Records writes made by services that only add/commit/refresh."""

    def __init__(self):
        self.added = []
        self.commits = 0

    def add(self, obj):
        self.added.append(obj)

    async def commit(self):
        self.commits += 1

    async def refresh(self, obj):
        return None


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_http_error():
    return http_error


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        c.portal.call(drop_db_and_tables)
        c.portal.call(create_db_and_tables)
        yield c


@pytest.fixture
def fake_drive(monkeypatch):
    drive = FakeDrive()
    monkeypatch.setattr(drive_service, "get_drive_service", lambda token: drive)
    return drive


@pytest.fixture
def fake_sheets(monkeypatch):
    sheets = FakeSheets()
    monkeypatch.setattr(drive_service, "get_sheets_service", lambda token: sheets)
    return sheets


async def _insert(*objs):
    async with AsyncSessionLocal() as session:
        for obj in objs:
            session.add(obj)
            await session.flush()
        await session.commit()
        for obj in objs:
            await session.refresh(obj)
    return objs


@pytest.fixture
def make_user(client):
    """Creates a user with a stored Google credential and returns (user, headers)."""
    counter = {"n": 0}

    def _make(access_token="stored-token", refresh_token="refresh-token", expires_in=3600):
        counter["n"] += 1
        expires_at = int(time.time()) + expires_in if expires_in is not None else None
        user = User(email="admin%d@example.com" % counter["n"], name="Admin %d" % counter["n"])
        client.portal.call(_insert, user)
        account = Account(
            userId=user.id, provider="google", providerAccountId="google-%d" % user.id,
            access_token=access_token, refresh_token=refresh_token, expires_at=expires_at,
        )
        client.portal.call(_insert, account)
        headers = {"Authorization": "Bearer %s" % create_session_token({"sub": str(user.id)})}
        return user, headers
    return _make


@pytest.fixture
def make_form(client):
    def _make(user, **fields):
        form = Form(userId=user.id, **fields)
        client.portal.call(_insert, form)
        return form
    return _make


@pytest.fixture
def load_account(client):
    async def _load(user_id):
        async with AsyncSessionLocal() as session:
            from services.token_service import get_account
            return await get_account(session, user_id)

    return lambda user_id: client.portal.call(_load, user_id)


@pytest.fixture
def server_error_client(client):
    """Client that returns 500 responses instead of re-raising unexpected errors."""
    return TestClient(main.app, raise_server_exceptions=False)
