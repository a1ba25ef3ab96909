from attendance_client.credentials import CredentialStore
from attendance_client.types import AuthenticatedUser


def test_store_and_read_back(tmp_path):
    store = CredentialStore(tmp_path / "state" / "credentials.db")
    user = AuthenticatedUser(user_id="7", username="frontdesk", name="Front Desk", role="operator")

    store.store("tok-1", user)

    assert store.get_token() == "tok-1"
    assert store.get_user() == user


def test_credentials_survive_restart(tmp_path):
    path = tmp_path / "credentials.db"
    CredentialStore(path).store("tok-2", AuthenticatedUser(user_id="1", username="a"))

    reopened = CredentialStore(path)

    assert reopened.get_token() == "tok-2"
    assert reopened.get_user().username == "a"


def test_store_replaces_previous_login(tmp_path):
    store = CredentialStore(tmp_path / "credentials.db")
    store.store("old", AuthenticatedUser(user_id="1", username="a"))
    store.store("new", AuthenticatedUser(user_id="2", username="b"))

    assert store.get_token() == "new"
    assert store.get_user().user_id == "2"


def test_clear(tmp_path):
    store = CredentialStore(tmp_path / "credentials.db")
    store.store("tok", AuthenticatedUser(user_id="1", username="a"))

    store.clear()

    assert store.get_token() is None
    assert store.get_user() is None
