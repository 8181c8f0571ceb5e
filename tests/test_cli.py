import datetime
import json

import pytest
import requests

from fakes import component_res, doc, license_res, machine_res, token_res, user_res
from keygen_cli import cli
from keygen_cli.config import Profile, ProfileStore


@pytest.fixture
def run(store, factory, capsys):
    def inner(*argv):
        code = cli.main(list(argv), store=store, transport_factory=factory)
        captured = capsys.readouterr()
        try:
            out = json.loads(captured.out)
        except ValueError:
            out = captured.out
        return code, out, captured.err

    return inner


@pytest.fixture
def prod(store):
    store.save("prod", Profile(account_id="acct-1", base_url="https://api.example.test", token="prod-token-1234"))
    store.set_default("prod")
    return store


# ---------------------------
# profile
# ---------------------------

def test_profile_list_empty(run):
    code, out, _ = run("profile", "list")
    assert code == 0
    assert out["data"]["profiles"] == []


def test_profile_add_first_becomes_default(run, store):
    code, out, _ = run("profile", "add", "prod", "--account-id", "A", "--token", "abcd1234efgh")
    assert code == 0
    assert out["data"]["token"] == "abcd****efgh"
    assert out["data"]["base_url"] == "https://api.keygen.sh"
    assert store.list() == (["prod"], "prod")

    run("profile", "add", "test", "--account-id", "B")
    assert store.list() == (["prod", "test"], "prod")


def test_profile_add_existing_is_conflict(run, prod):
    code, out, _ = run("profile", "add", "prod", "--account-id", "X")
    assert code == 4
    assert out["ok"] is False
    assert "already exists" in out["error"]
    assert prod.get("prod").account_id == "acct-1"


def test_profile_add_requires_account_id(run):
    code, _, err = run("profile", "add", "prod")
    assert code == 2
    assert "--account-id" in err


def test_profile_edit_clears_expiry_on_new_token(run, store):
    store.save("prod", Profile(account_id="A", token="old", token_expiry="2030-01-01T00:00:00Z"))
    code, _, _ = run("profile", "edit", "prod", "--token", "new")
    assert code == 0
    saved = store.get("prod")
    assert (saved.token, saved.token_expiry) == ("new", "")


def test_profile_edit_without_flags(run, prod):
    code, _, err = run("profile", "edit", "prod")
    assert code == 2
    assert "no update flags" in err


def test_profile_show_masks_token(run, prod):
    code, out, _ = run("profile", "show", "prod")
    assert code == 0
    assert out["data"]["token"] == "prod*******1234"
    assert out["data"]["default"] is True


def test_profile_use_rename_delete(run, prod):
    prod.save("test", Profile(account_id="B"))

    assert run("profile", "use", "test")[0] == 0
    assert prod.default_name() == "test"

    assert run("profile", "rename", "test", "staging")[0] == 0
    assert prod.list() == (["prod", "staging"], "staging")
    assert ProfileStore(prod.directory).list() == (["prod", "staging"], "staging")

    assert run("profile", "delete", "staging")[0] == 0
    assert prod.list() == (["prod"], "default")


def test_profile_table_output(run, prod):
    code, out, _ = run("profile", "list", "--format", "csv")
    assert code == 0
    assert out.splitlines() == ["PROFILE,DEFAULT,ACCOUNT_ID,BASE_URL", "prod,*,acct-1,https://api.example.test"]


def test_unknown_profile_delete_is_not_found(run):
    code, out, _ = run("profile", "delete", "ghost")
    assert code == 4
    assert out == {"ok": False, "error": "profile 'ghost' not found"}


# ---------------------------
# login / whoami / config
# ---------------------------

def test_login_token_verifies_and_saves(run, store, session):
    session.add("GET", "/me", doc(user_res("u1", "ada@example.com")))
    code, out, _ = run(
        "login", "token",
        "--profile", "prod",
        "--account-id", "acct-1",
        "--base-url", "https://api.example.test",
        "--token", "tok-abc",
    )
    assert code == 0
    assert out["data"]["profile"] == "prod"
    assert session.calls[0].headers["Authorization"] == "Bearer tok-abc"
    assert store.get("prod").token == "tok-abc"


def test_login_token_rejected(run, store, session):
    session.add("GET", "/me", {"errors": [{"title": "Unauthorized", "detail": "bad token", "code": "TOKEN_INVALID"}]}, status=401)
    code, out, _ = run("login", "token", "--account-id", "a", "--base-url", "https://x", "--token", "bad")
    assert code == 10
    assert "bad token" in out["error"]
    assert store.find("default") is None


def test_login_password_saves_token_and_expiry(run, store, session):
    session.add("POST", "/tokens", doc(token_res("user-token", "2031-01-01T00:00:00Z")))
    code, out, _ = run(
        "login", "password",
        "--profile", "prod",
        "--account-id", "acct-1",
        "--base-url", "https://api.example.test",
        "--email", "ada@example.com",
        "--password", "pw",
    )
    assert code == 0
    assert out["data"]["expiry"] == "2031-01-01T00:00:00Z"
    saved = store.get("prod")
    assert (saved.token, saved.email, saved.password) == ("user-token", "ada@example.com", "pw")
    assert session.calls[0].auth == ("ada@example.com", "pw")


def test_login_password_requires_credentials(run):
    code, _, err = run("login", "password", "--account-id", "a", "--password", "pw")
    assert code == 2
    assert "email and password" in err


def test_logout_removes_profile(run, prod):
    code, out, _ = run("logout")
    assert code == 0
    assert prod.find("prod") is None
    code, out, _ = run("logout", "--profile", "prod")
    assert out["data"]["message"] == "No saved config to clear"


def test_whoami_reports_token_validity(run, prod, session):
    session.add("GET", "/me", doc(user_res("u1", "ada@example.com")))
    code, out, _ = run("whoami")
    assert code == 0
    assert out["data"]["token_valid"] is True
    assert out["data"]["email"] == "ada@example.com"

    session.add("GET", "/me", {"errors": [{"title": "Unauthorized"}]}, status=401)
    code, out, _ = run("whoami")
    assert code == 0
    assert out["data"]["token_valid"] is False


def test_config_show_uses_env_over_profile(run, prod, monkeypatch):
    monkeypatch.setenv("KEYGEN_ACCOUNT_ID", "env-acct")
    code, out, _ = run("config", "show")
    assert code == 0
    assert out["data"]["account_id"] == "env-acct"
    assert out["data"]["stored"] is True


def test_env_file_flag(run, prod, tmp_path):
    env = tmp_path / "ci.env"
    env.write_text("KEYGEN_BASE_URL=https://from-env-file.example\n")
    code, out, _ = run("config", "show", "--env-file", str(env))
    assert code == 0
    assert out["data"]["base_url"] == "https://from-env-file.example"


def test_missing_config_is_misconfigured(run):
    code, out, _ = run("licenses", "list")
    assert code == 3
    assert out["error"].startswith("account ID not configured (set KEYGEN_ACCOUNT_ID")


def test_verbose_notes_go_to_stderr(run, prod, session):
    session.add("GET", "/licenses", doc([]))
    code, out, err = run("licenses", "list", "--verbose")
    assert code == 0
    assert out["count"] == 0
    assert "[info] using profile 'prod'" in err


# ---------------------------
# licenses / components / users
# ---------------------------

def test_licenses_list_table(run, prod, session):
    session.add("GET", "/licenses", doc([license_res("L1", status="active", owner="u1")]))
    code, out, _ = run("licenses", "list", "--format", "csv", "--status", "active")
    assert code == 0
    assert out.splitlines() == ["ID,KEY,NAME,STATUS,EXPIRY,OWNER_ID", "L1,KEY-L1,License L1,ACTIVE,,u1"]
    assert session.calls[0].params == {"status": "active", "page[size]": "10", "page[number]": "1"}


def test_licenses_show_not_found(run, prod, session):
    session.add(
        "GET",
        "/licenses/nope",
        {"errors": [{"title": "Not found", "detail": "license not found", "code": "LICENSE_NOT_FOUND"}]},
        status=404,
    )
    code, out, _ = run("licenses", "show", "nope")
    assert code == 13
    assert out["error"] == "API error 404: Not found - license not found (code: LICENSE_NOT_FOUND)"


def test_licenses_status(run, prod, session):
    session.add(
        "POST",
        "/licenses/L1/actions/validate",
        doc(license_res("L1", expiry="2999-01-01T00:00:00Z"), meta={"valid": True, "detail": "is valid", "code": "VALID"}),
    )
    session.add(
        "GET",
        "/licenses/L1/machines",
        doc([machine_res("m1")], included=[component_res("c1", machine="m1"), component_res("c2", machine="m1")]),
    )
    code, out, _ = run("licenses", "status", "L1")
    assert code == 0
    data = out["data"]
    assert data["valid"] is True
    assert (data["machines"], data["components"]) == (1, 2)
    assert data["days_remaining"] > 0


def test_licenses_renew(run, prod, session):
    session.add("GET", "/licenses/L1", doc(license_res("L1", expiry="2030-01-01T00:00:00Z")))
    session.add("POST", "/licenses/L1/actions/renew", doc(license_res("L1", expiry="2031-01-01T00:00:00Z")))
    code, out, _ = run("licenses", "renew", "L1")
    assert code == 0
    assert (out["data"]["old_expiry"], out["data"]["new_expiry"]) == ("2030-01-01T00:00:00Z", "2031-01-01T00:00:00Z")


def test_licenses_set_metadata_merges(run, prod, session):
    session.add("GET", "/licenses/L1", doc(license_res("L1", metadata={"maxDevices": 2, "note": "x"})))
    session.add("PATCH", "/licenses/L1", doc(license_res("L1", metadata={"maxDevices": 5})))
    code, _, _ = run("licenses", "set-metadata", "L1", "maxDevices=5", "--unset", "note")
    assert code == 0
    patch = [c for c in session.calls if c.method == "PATCH"][0]
    assert patch.json()["data"]["attributes"] == {"metadata": {"maxDevices": 5}}


def test_licenses_set_metadata_bad_pair(run, prod, session):
    session.add("GET", "/licenses/L1", doc(license_res("L1")))
    code, out, _ = run("licenses", "set-metadata", "L1", "oops")
    assert code == 2
    assert "KEY=VALUE" in out["error"]


def test_components_delete_needs_force(run, prod, session):
    session.add("GET", "/machines", doc([machine_res("m1")]))
    session.add("GET", "/machines/m1/components", doc([component_res("c1", machine="m1", fingerprint="abc")]))
    session.add("DELETE", "/components/c1", None, status=204)

    code, out, _ = run("components", "delete", "abc")
    assert code == 0
    assert "confirm" in out["data"]
    assert session.paths("DELETE") == []

    code, out, _ = run("components", "delete", "abc", "--force")
    assert code == 0
    assert out["data"]["deleted"] is True
    assert session.paths("DELETE") == ["/components/c1"]


def test_components_check_missing(run, prod, session):
    session.add("GET", "/machines", doc([]))
    code, out, _ = run("components", "check", "zzz")
    assert code == 0
    assert out["data"] == {"found": False, "fingerprint": "zzz"}


def test_users_show_by_email(run, prod, session):
    session.add("GET", "/users", doc([user_res("u1", "ada@example.com")]))
    session.add("GET", "/users/u1/licenses", doc([license_res("L1"), license_res("L2")]))
    code, out, _ = run("users", "show", "ada@example.com")
    assert code == 0
    assert out["data"]["id"] == "u1"
    assert out["data"]["license_count"] == 2


def test_users_show_unknown_email(run, prod, session):
    session.add("GET", "/users", doc([]))
    code, out, _ = run("users", "show", "who@example.com")
    assert code == 4
    assert out["error"] == "user not found: who@example.com"


def test_users_update(run, prod, session):
    session.add("GET", "/users/u1", doc(user_res("u1", "ada@example.com")))
    session.add("PATCH", "/users/u1", doc(user_res("u1", "ada@example.com", firstName="Augusta")))
    code, out, _ = run("users", "update", "u1", "--first-name", "Augusta", "--metadata", "tier=gold")
    assert code == 0
    patch = [c for c in session.calls if c.method == "PATCH"][0]
    assert patch.json()["data"]["attributes"] == {"firstName": "Augusta", "metadata": {"tier": "gold"}}


# ---------------------------
# status
# ---------------------------

def _status_routes(session):
    session.add("GET", "/licenses", doc([license_res("L1", owner="u1", metadata={"maxDevices": 3, "maxPrinters": 1})]))
    session.add("GET", "/users", doc([user_res("u1", "ada@example.com")]))
    session.add("GET", "/products", doc([{"id": "p1", "type": "products", "attributes": {"name": "Suite"}}]))
    session.add("GET", "/users/u1", doc(user_res("u1", "ada@example.com")))
    session.add(
        "GET",
        "/licenses/L1/machines",
        doc(
            [machine_res("m1")],
            included=[
                component_res("c1", machine="m1", name="Label Printer"),
                component_res("c2", machine="m1", name="db-srv"),
                component_res("c3", machine="m1", name="tablet"),
            ],
        ),
    )


def test_status_summary(run, prod, session):
    _status_routes(session)
    code, out, _ = run("status")
    assert code == 0
    data = out["data"]
    assert (data["total_licenses"], data["total_users"], data["total_products"]) == (1, 1, 1)
    assert data["license_statuses"] == {"ACTIVE": 1}
    lic = data["licenses"][0]
    assert (lic["devices"], lic["printers"], lic["servers"]) == (1, 1, 1)
    assert (lic["max_devices"], lic["max_printers"], lic["max_servers"]) == ("3", "1", "")
    assert lic["owner_email"] == "ada@example.com"


def test_status_fields_limit_table_columns(run, prod, session):
    _status_routes(session)
    code, out, err = run("status", "--format", "csv", "--fields", "key,printers,bogus")
    assert code == 0
    assert out.splitlines() == ["KEY,PRINTERS", "KEY-L1,1/1"]
    assert "bogus" in err


def test_transport_failure_exit_code(run, prod, session):
    session.fail("GET", "/licenses", requests.Timeout("timed out"))
    code, out, _ = run("licenses", "list")
    assert code == 12
    assert "timed out" in out["error"]


def test_no_command_prints_help(run):
    code, out, _ = run()
    assert code == 2
    assert "usage" in out


def test_failed_refresh_suggests_login(run, store, session):
    store.save(
        "prod",
        Profile(
            account_id="acct-1",
            base_url="https://api.example.test",
            token="stale-token",
            token_expiry="2000-01-01T00:00:00Z",
            email="ada@example.com",
            password="wrong",
        ),
    )
    store.set_default("prod")
    session.add("POST", "/tokens", {"errors": [{"title": "Unauthorized", "detail": "bad credentials"}]}, status=401)

    code, out, _ = run("licenses", "list")

    assert code == 10
    assert out["ok"] is False
    assert "refresh failed for profile 'prod'" in out["error"]
    assert "keygen login password --profile prod" in out["hint"]
    assert session.paths() == ["/tokens"]
    assert ProfileStore(store.directory).get("prod").token == "stale-token"


@pytest.mark.parametrize(
    "expiry, days",
    [
        ("2030-06-11T12:00:00Z", 10),
        ("2030-06-02T11:00:00Z", 0),
        ("2030-05-01T00:00:00Z", 0),
        ("", 0),
        ("garbage", 0),
    ],
)
def test_days_remaining(expiry, days):
    now = datetime.datetime(2030, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)
    assert cli.days_remaining(expiry, now) == days
