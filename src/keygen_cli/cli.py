#!/usr/bin/env python3
"""
Keygen CLI

Features
- profile: manage named profiles (endpoint + credentials), like AWS CLI profiles.
- login: store an API token, or exchange email/password for a user token.
- logout: forget the active profile.
- whoami / config show: inspect the active profile.
- licenses, components, users, products: list/show/update and license actions
  (validate, renew, suspend, reinstate).
- status: account (or per-user) summary with component breakdown.

Environment / Config
- Precedence for every credential field:
  1) flags (`--account-id`, `--base-url`, `--token`)
  2) env `KEYGEN_ACCOUNT_ID`, `KEYGEN_BASE_URL`, `KEYGEN_TOKEN` (alias `KEYGEN_API_TOKEN`),
     `KEYGEN_EMAIL`, `KEYGEN_PASSWORD`, `KEYGEN_PUBLIC_KEY`; `.env` files are loaded first
  3) the selected profile in `~/.keygen-cli/profiles.toml` (`--profile`, else the default)
- Output is JSON unless `--format table` or `--format csv` is given.
"""

from __future__ import annotations

import argparse
import dataclasses
import datetime
import getpass
import json
import sys
import typing as t

from . import __version__
from .api import KeygenClient
from .config import DEFAULT_BASE_URL, Profile, ProfileStore, load_env_files
from .errors import (
    APIError,
    ConfigError,
    Conflict,
    DecodeError,
    KeygenError,
    Misconfigured,
    NotFound,
    RefreshFailed,
    TransportError,
)
from .jsonapi import as_datetime
from .models import License, User, to_dict
from . import output
from .resolver import EffectiveConfig, authenticate, build_client, resolve
from .transport import Transport

EXIT_USAGE = 2
EXIT_CONFIG = 3
EXIT_NOT_FOUND = 4
EXIT_AUTH = 10
EXIT_NETWORK = 12
EXIT_API = 13

STATUS_FIELDS = ("key", "name", "status", "days", "owner", "machines", "devices", "printers", "servers")


# ------------------------
# Invocation context
# ------------------------

@dataclasses.dataclass
class Context:
    args: argparse.Namespace
    store: ProfileStore
    transport_factory: t.Callable[..., Transport] = Transport

    @property
    def fmt(self) -> str:
        return self.args.format

    @property
    def tabular(self) -> bool:
        return self.fmt in ("table", "csv")

    def info(self, msg: str) -> None:
        if self.args.verbose:
            print(f"[info] {msg}", file=sys.stderr)

    def warn(self, msg: str) -> None:
        if not self.args.quiet:
            print(f"[warning] {msg}", file=sys.stderr)

    def config(self) -> EffectiveConfig:
        cfg = resolve(
            self.store,
            self.args.profile or "",
            overrides={
                "account_id": self.args.account_id,
                "base_url": self.args.base_url,
                "token": self.args.token,
            },
        )
        self.info(f"using profile {cfg.profile_name!r} ({cfg.base_url or 'no base URL'})")
        return cfg

    def client(self, cfg: EffectiveConfig | None = None) -> KeygenClient:
        cfg = cfg or self.config()
        before = cfg.token
        client = authenticate(cfg, self.store, transport_factory=self.transport_factory)
        if cfg.token != before:
            self.info(f"token expired; refreshed and saved to profile {cfg.profile_name!r}")
        return client


# ------------------------
# Helpers
# ------------------------

def days_remaining(expiry: str, now: datetime.datetime | None = None) -> int:
    exp = as_datetime(expiry)
    if exp is None:
        return 0
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return int(max(0.0, (exp - now).total_seconds() / 86400))


def parse_assignments(pairs: t.Sequence[str]) -> dict[str, t.Any]:
    """KEY=VALUE pairs; values that parse as JSON keep their type (maxDevices=5 -> 5)."""
    out: dict[str, t.Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {pair!r}")
        key, raw = pair.split("=", 1)
        try:
            out[key.strip()] = json.loads(raw)
        except ValueError:
            out[key.strip()] = raw
    return out


def lookup_user(client: KeygenClient, identifier: str) -> User:
    if "@" in identifier:
        return client.find_user_by_email(identifier)
    return client.get_user(identifier)


def classify_component(name: str) -> str:
    lowered = name.lower()
    if "printer" in lowered or "print" in lowered:
        return "printers"
    if "server" in lowered or "srv" in lowered:
        return "servers"
    return "devices"


def _profile_summary(name: str, p: Profile, default: str) -> dict[str, t.Any]:
    return {
        "profile": name,
        "default": name == default,
        "account_id": p.account_id,
        "base_url": p.base_url,
        "token": output.mask_token(p.token),
        "email": p.email,
        "has_password": bool(p.password),
        "token_expiry": p.token_expiry,
        "verifies_signatures": bool(p.public_key),
    }


# ------------------------
# profile
# ------------------------

def cmd_profile_list(ctx: Context, _args: argparse.Namespace) -> int:
    names, default = ctx.store.list()
    if not names:
        output.success({
            "profiles": [],
            "message": "No profiles configured. Run 'keygen profile add <name>' to create one.",
        })
        return 0
    items = []
    for name in names:
        p = ctx.store.get(name)
        items.append({"name": name, "default": name == default, "account_id": p.account_id, "base_url": p.base_url})
    if ctx.tabular:
        rows = [[i["name"], "*" if i["default"] else "", i["account_id"], i["base_url"]] for i in items]
        output.tabular(ctx.fmt, ["PROFILE", "DEFAULT", "ACCOUNT_ID", "BASE_URL"], rows)
    else:
        output.success_list(items)
    return 0


def cmd_profile_add(ctx: Context, args: argparse.Namespace) -> int:
    name = args.name
    if ctx.store.exists(name):
        raise Conflict(f"profile {name!r} already exists. Use 'keygen profile edit {name}' to modify it.")
    if not args.account_id:
        print("[error] --account-id is required when adding a profile", file=sys.stderr)
        return EXIT_USAGE
    profile = Profile(
        account_id=args.account_id,
        base_url=args.base_url or DEFAULT_BASE_URL,
        token=args.token or "",
        email=args.email or "",
        password=args.password or "",
        public_key=args.public_key or "",
    )
    ctx.store.save(name, profile)
    names, _ = ctx.store.list()
    if len(names) == 1:
        ctx.store.set_default(name)
    output.success({
        "message": f"Profile {name!r} created",
        "profile": name,
        "account_id": profile.account_id,
        "base_url": profile.base_url,
        "token": output.mask_token(profile.token),
        "email": profile.email,
    })
    return 0


def cmd_profile_edit(ctx: Context, args: argparse.Namespace) -> int:
    name = args.name
    profile = ctx.store.get(name)
    changed = False
    for field in ("account_id", "base_url", "token", "email", "password", "public_key"):
        value = getattr(args, field, None)
        if value is not None:
            setattr(profile, field, value)
            changed = True
    if args.token is not None:
        profile.token_expiry = ""
    if not changed:
        print(
            "[error] no update flags provided. Use --account-id, --base-url, --token, "
            "--email, --password or --public-key",
            file=sys.stderr,
        )
        return EXIT_USAGE
    ctx.store.save(name, profile)
    output.success({
        "message": f"Profile {name!r} updated",
        "profile": name,
        "account_id": profile.account_id,
        "base_url": profile.base_url,
    })
    return 0


def cmd_profile_show(ctx: Context, args: argparse.Namespace) -> int:
    profile = ctx.store.get(args.name)
    _, default = ctx.store.list()
    output.success(_profile_summary(args.name, profile, default))
    return 0


def cmd_profile_delete(ctx: Context, args: argparse.Namespace) -> int:
    ctx.store.delete(args.name)
    output.success({"message": f"Profile {args.name!r} deleted", "profile": args.name})
    return 0


def cmd_profile_use(ctx: Context, args: argparse.Namespace) -> int:
    ctx.store.set_default(args.name)
    output.success({"message": f"Default profile set to {args.name!r}", "profile": args.name})
    return 0


def cmd_profile_rename(ctx: Context, args: argparse.Namespace) -> int:
    ctx.store.rename(args.old_name, args.new_name)
    output.success({
        "message": f"Profile {args.old_name!r} renamed to {args.new_name!r}",
        "old_name": args.old_name,
        "new_name": args.new_name,
    })
    return 0


# ------------------------
# login / logout / whoami / config
# ------------------------

def cmd_login_token(ctx: Context, _args: argparse.Namespace) -> int:
    cfg = ctx.config()
    cfg.validate()
    client = build_client(cfg, ctx.transport_factory)
    client.whoami()

    cfg.token_expiry = ""
    ctx.store.save(cfg.profile_name, cfg.profile())
    output.success({
        "message": "Login successful",
        "profile": cfg.profile_name,
        "account_id": cfg.account_id,
        "base_url": cfg.base_url,
    })
    return 0


def cmd_login_password(ctx: Context, args: argparse.Namespace) -> int:
    cfg = ctx.config()
    if args.email:
        cfg.email = args.email
    if args.password and args.password_stdin:
        print("[error] specify only one of --password or --password-stdin", file=sys.stderr)
        return EXIT_USAGE
    if args.password:
        cfg.password = args.password
    elif args.password_stdin:
        cfg.password = sys.stdin.read().rstrip("\n\r")
    elif not cfg.password and cfg.email and sys.stdin.isatty():
        cfg.password = getpass.getpass("Password: ")

    if not cfg.email or not cfg.password:
        print("[error] email and password are required", file=sys.stderr)
        return EXIT_USAGE
    if not cfg.account_id:
        raise Misconfigured("account ID", cfg.profile_name, "KEYGEN_ACCOUNT_ID")
    if not cfg.base_url:
        raise Misconfigured("base URL", cfg.profile_name, "KEYGEN_BASE_URL")

    bare = KeygenClient(ctx.transport_factory(cfg.base_url, cfg.account_id, "", public_key=cfg.public_key))
    token = bare.create_token(cfg.email, cfg.password)
    if not token.token:
        raise DecodeError("login response did not include a token")

    cfg.token = token.token
    cfg.token_expiry = token.expiry
    ctx.store.save(cfg.profile_name, cfg.profile())
    output.success({
        "message": "Login successful",
        "profile": cfg.profile_name,
        "token_id": token.id,
        "expiry": token.expiry,
        "account_id": cfg.account_id,
    })
    return 0


def cmd_logout(ctx: Context, _args: argparse.Namespace) -> int:
    cfg = ctx.config()
    try:
        ctx.store.delete(cfg.profile_name)
    except NotFound:
        output.success({"message": "No saved config to clear", "profile": cfg.profile_name})
        return 0
    output.success({
        "message": f"Logged out; profile {cfg.profile_name!r} removed",
        "profile": cfg.profile_name,
    })
    return 0


def cmd_whoami(ctx: Context, _args: argparse.Namespace) -> int:
    cfg = ctx.config()
    if not cfg.token:
        raise Misconfigured("token", cfg.profile_name, "KEYGEN_TOKEN")
    cfg.validate()
    client = build_client(cfg, ctx.transport_factory)
    result: dict[str, t.Any] = {
        "profile": cfg.profile_name,
        "account_id": cfg.account_id,
        "base_url": cfg.base_url,
        "auth_method": "token",
        "token_valid": False,
    }
    try:
        me = client.whoami()
    except APIError as exc:
        ctx.info(f"token rejected: {exc}")
        output.success(result)
        return 0
    result["token_valid"] = True
    res = me.single()
    if res is not None:
        result["bearer_type"] = res.type
        result["bearer_id"] = res.id
        email = res.attr("email")
        if isinstance(email, str) and email:
            result["email"] = email
    output.success(result)
    return 0


def cmd_config_show(ctx: Context, _args: argparse.Namespace) -> int:
    cfg = ctx.config()
    summary = _profile_summary(cfg.profile_name, cfg, ctx.store.default_name())
    summary["stored"] = ctx.store.exists(cfg.profile_name)
    output.success(summary)
    return 0


def cmd_config_clear(ctx: Context, args: argparse.Namespace) -> int:
    cfg = ctx.config()
    try:
        ctx.store.delete(cfg.profile_name)
    except NotFound as exc:
        ctx.warn(str(exc))
    output.success({"message": "Configuration cleared", "profile": cfg.profile_name})
    return 0


# ------------------------
# licenses
# ------------------------

def _license_rows(licenses: t.Sequence[License]) -> list[list[str]]:
    return [[l.id, l.key, l.name, l.status.upper(), l.expiry, l.owner_id] for l in licenses]


def cmd_licenses_list(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    params: dict[str, str] = {
        "user": args.user or "",
        "product": args.product or "",
        "policy": args.policy or "",
        "status": args.status or "",
    }
    if args.limit > 0:
        params["page[size]"] = str(args.limit)
    if args.page > 0:
        params["page[number]"] = str(args.page)
    licenses = client.list_licenses(params)
    if ctx.tabular:
        output.tabular(ctx.fmt, ["ID", "KEY", "NAME", "STATUS", "EXPIRY", "OWNER_ID"], _license_rows(licenses))
    else:
        output.success_list(licenses)
    return 0


def cmd_licenses_show(ctx: Context, args: argparse.Namespace) -> int:
    output.success(ctx.client().get_license(args.license_id))
    return 0


def cmd_licenses_status(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    validation, lic = client.validate_license(args.license_id)
    machines = client.license_machines(args.license_id)
    component_count = sum(len(m.components) for m in machines)
    days = days_remaining(lic.expiry) if lic else 0

    result: dict[str, t.Any] = {
        "license_id": args.license_id,
        "valid": validation.valid,
        "status": lic.status if lic else "",
        "detail": validation.detail,
        "code": validation.code,
        "machines": len(machines),
        "components": component_count,
        "days_remaining": days,
    }
    if lic is not None:
        result.update(key=lic.key, name=lic.name, expiry=lic.expiry)

    if ctx.tabular:
        headers = ["LICENSE_ID", "VALID", "STATUS", "DAYS_LEFT", "MACHINES", "COMPONENTS"]
        row = [args.license_id, str(validation.valid).lower(), result["status"], days, len(machines), component_count]
        output.tabular(ctx.fmt, headers, [row])
    else:
        output.success(result)
    return 0


def cmd_licenses_renew(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    old = client.get_license(args.license_id)
    renewed = client.renew_license(args.license_id)
    output.success({
        "license_id": renewed.id,
        "key": renewed.key,
        "name": renewed.name,
        "old_expiry": old.expiry,
        "new_expiry": renewed.expiry,
        "status": renewed.status,
    })
    return 0


def cmd_licenses_suspend(ctx: Context, args: argparse.Namespace) -> int:
    output.success(ctx.client().suspend_license(args.license_id))
    return 0


def cmd_licenses_reinstate(ctx: Context, args: argparse.Namespace) -> int:
    output.success(ctx.client().reinstate_license(args.license_id))
    return 0


def cmd_licenses_components(ctx: Context, args: argparse.Namespace) -> int:
    machines = ctx.client().license_machines(args.license_id)
    items = [
        {
            "id": c.id,
            "fingerprint": c.fingerprint,
            "name": c.name,
            "machine_id": m.id,
            "machine_fingerprint": m.fingerprint,
        }
        for m in machines
        for c in m.components
    ]
    if ctx.tabular:
        rows = [[i["id"], i["fingerprint"], i["name"], i["machine_id"], i["machine_fingerprint"]] for i in items]
        output.tabular(ctx.fmt, ["ID", "FINGERPRINT", "NAME", "MACHINE_ID", "MACHINE_FP"], rows)
    else:
        output.success_list(items)
    return 0


def cmd_licenses_set_metadata(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    lic = client.get_license(args.license_id)
    metadata = dict(lic.metadata)
    metadata.update(parse_assignments(args.pairs))
    for key in args.unset or []:
        metadata.pop(key, None)
    updated = client.update_license(args.license_id, {"metadata": metadata})
    output.success(updated)
    return 0


# ------------------------
# components
# ------------------------

def cmd_components_check(ctx: Context, args: argparse.Namespace) -> int:
    comp = ctx.client().find_component_by_fingerprint(args.fingerprint)
    if comp is None:
        output.success({"found": False, "fingerprint": args.fingerprint})
        return 0
    output.success({
        "found": True,
        "fingerprint": comp.fingerprint,
        "id": comp.id,
        "name": comp.name,
        "machine_id": comp.machine_id,
    })
    return 0


def cmd_components_delete(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    comp = client.find_component_by_fingerprint(args.fingerprint)
    if comp is None:
        raise NotFound(f"component not found: {args.fingerprint}")
    if not args.force:
        output.success({
            "action": "delete",
            "fingerprint": comp.fingerprint,
            "id": comp.id,
            "name": comp.name,
            "machine_id": comp.machine_id,
            "confirm": "use --force to confirm deletion",
        })
        return 0
    client.delete_component(comp.id)
    output.success({"deleted": True, "fingerprint": comp.fingerprint, "id": comp.id, "name": comp.name})
    return 0


# ------------------------
# users / products
# ------------------------

def cmd_users_list(ctx: Context, args: argparse.Namespace) -> int:
    params = {"email": args.email or "", "page[size]": str(args.limit), "page[number]": str(args.page)}
    users = ctx.client().list_users(params)
    if ctx.tabular:
        rows = [[u.id, u.email, u.full_name, u.role, u.status] for u in users]
        output.tabular(ctx.fmt, ["ID", "EMAIL", "NAME", "ROLE", "STATUS"], rows)
    else:
        output.success_list(users)
    return 0


def cmd_users_show(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    user = lookup_user(client, args.user)
    licenses = client.user_licenses(user.id)
    data = to_dict(user)
    data["license_count"] = len(licenses)
    output.success(data)
    return 0


def cmd_users_status(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    user = lookup_user(client, args.user)
    licenses = client.user_licenses(user.id)

    counts = {"active": 0, "expiring": 0, "expired": 0, "suspended": 0}
    total_machines = 0
    total_components = 0
    for lic in licenses:
        status = lic.status.lower()
        if status in counts:
            counts[status] += 1
        machines = client.license_machines(lic.id)
        total_machines += len(machines)
        total_components += sum(len(m.components) for m in machines)

    result = {
        "user_id": user.id,
        "email": user.email,
        "total_licenses": len(licenses),
        **counts,
        "total_machines": total_machines,
        "total_components": total_components,
    }
    if ctx.tabular:
        headers = ["USER_ID", "EMAIL", "LICENSES", "ACTIVE", "EXPIRING", "EXPIRED", "MACHINES", "COMPONENTS"]
        row = [user.id, user.email, len(licenses), counts["active"], counts["expiring"],
               counts["expired"], total_machines, total_components]
        output.tabular(ctx.fmt, headers, [row])
    else:
        output.success(result)
    return 0


def cmd_users_update(ctx: Context, args: argparse.Namespace) -> int:
    client = ctx.client()
    user = lookup_user(client, args.user)
    attrs: dict[str, t.Any] = {}
    if args.first_name is not None:
        attrs["firstName"] = args.first_name
    if args.last_name is not None:
        attrs["lastName"] = args.last_name
    if args.new_email is not None:
        attrs["email"] = args.new_email
    if args.role is not None:
        attrs["role"] = args.role
    if args.metadata:
        metadata = dict(user.metadata)
        metadata.update(parse_assignments(args.metadata))
        attrs["metadata"] = metadata
    if not attrs:
        print("[error] nothing to update", file=sys.stderr)
        return EXIT_USAGE
    output.success(client.update_user(user.id, attrs))
    return 0


def cmd_products_list(ctx: Context, _args: argparse.Namespace) -> int:
    products = ctx.client().list_products()
    if ctx.tabular:
        output.tabular(ctx.fmt, ["ID", "NAME"], [[p.id, p.name] for p in products])
    else:
        output.success_list(products)
    return 0


# ------------------------
# status
# ------------------------

def _status_fields(raw: str | None) -> list[str]:
    if not raw:
        return list(STATUS_FIELDS)
    return [f.strip().lower() for f in raw.split(",") if f.strip()]


def cmd_status(ctx: Context, args: argparse.Namespace) -> int:
    cfg = ctx.config()
    client = ctx.client(cfg)

    user: User | None = lookup_user(client, args.user) if args.user else None

    params = {"page[size]": "100", "page[number]": "1"}
    if user is not None:
        params["user"] = user.id
    licenses = client.list_licenses(params)

    user_count = product_count = 0
    if user is None:
        user_count = len(client.list_users({"page[size]": "100", "page[number]": "1"}))
        product_count = len(client.list_products())

    status_counts: dict[str, int] = {}
    owner_emails: dict[str, str] = {user.id: user.email} if user else {}
    details = []
    total_machines = total_components = 0
    for lic in licenses:
        status = lic.status.upper()
        status_counts[status] = status_counts.get(status, 0) + 1
        d: dict[str, t.Any] = {
            "id": lic.id,
            "key": lic.key,
            "name": lic.name,
            "status": status,
            "expiry": lic.expiry,
            "days_remaining": days_remaining(lic.expiry),
            "owner_email": "",
            "devices": 0,
            "printers": 0,
            "servers": 0,
        }
        for kind, meta_key in (("devices", "maxDevices"), ("printers", "maxPrinters"), ("servers", "maxServers")):
            d[f"max_{kind}"] = str(lic.metadata[meta_key]) if meta_key in lic.metadata else ""

        machines = client.license_machines(lic.id)
        d["machines"] = len(machines)
        total_machines += len(machines)
        for m in machines:
            total_components += len(m.components)
            for comp in m.components:
                d[classify_component(comp.name)] += 1

        if lic.owner_id:
            if lic.owner_id not in owner_emails:
                owner_emails[lic.owner_id] = client.get_user(lic.owner_id).email
            d["owner_email"] = owner_emails[lic.owner_id]
        details.append(d)

    fields = _status_fields(args.fields)
    columns: dict[str, tuple[str, t.Callable[[dict], str], tuple[str, ...]]] = {
        "key": ("KEY", lambda d: d["key"], ("key",)),
        "name": ("NAME", lambda d: d["name"], ("name",)),
        "status": ("STATUS", lambda d: d["status"], ("status",)),
        "days": ("DAYS", lambda d: str(d["days_remaining"]), ("days_remaining", "expiry")),
        "owner": ("OWNER", lambda d: d["owner_email"], ("owner_email",)),
        "machines": ("MACHINES", lambda d: str(d["machines"]), ("machines",)),
        "devices": ("DEVICES", lambda d: f"{d['devices']}/{d['max_devices']}", ("devices", "max_devices")),
        "printers": ("PRINTERS", lambda d: f"{d['printers']}/{d['max_printers']}", ("printers", "max_printers")),
        "servers": ("SERVERS", lambda d: f"{d['servers']}/{d['max_servers']}", ("servers", "max_servers")),
    }
    selected = [f for f in fields if f in columns]
    unknown = [f for f in fields if f not in columns]
    if unknown:
        ctx.warn(f"ignoring unknown fields: {', '.join(unknown)}")

    if ctx.tabular:
        if user is not None:
            summary = (f"User: {user.email} | Licenses: {len(licenses)} | "
                       f"Machines: {total_machines} | Components: {total_components}")
        else:
            summary = (f"Account: {cfg.account_id} | Licenses: {len(licenses)} | Users: {user_count} | "
                       f"Products: {product_count} | Machines: {total_machines} | Components: {total_components}")
        if ctx.fmt == "table":
            print(summary + "\n")
        headers = [columns[f][0] for f in selected]
        rows = [[columns[f][1](d) for f in selected] for d in details]
        output.tabular(ctx.fmt, headers, rows)
        return 0

    result: dict[str, t.Any] = {}
    if user is not None:
        result.update(user_id=user.id, user_email=user.email)
    else:
        result.update(
            account_id=cfg.account_id,
            base_url=cfg.base_url,
            total_users=user_count,
            total_products=product_count,
        )
    result.update(
        total_licenses=len(licenses),
        total_machines=total_machines,
        total_components=total_components,
        license_statuses=status_counts,
        licenses=[
            {"id": d["id"], **{k: d[k] for f in selected for k in columns[f][2]}}
            for d in details
        ],
    )
    output.success(result)
    return 0


# ------------------------
# Argparse
# ------------------------

def _global_options(p: argparse.ArgumentParser, default: t.Any) -> None:
    def dflt(value: t.Any) -> t.Any:
        return argparse.SUPPRESS if default is argparse.SUPPRESS else value

    p.add_argument("--profile", default=dflt(None), help="Named profile to use (default: the store's default profile)")
    p.add_argument("--format", choices=output.FORMATS, default=dflt("json"), help="Output format")
    p.add_argument("--quiet", action="store_true", default=dflt(False), help="Suppress warnings")
    p.add_argument("--verbose", action="store_true", default=dflt(False), help="Show [info] notes on stderr")
    p.add_argument("--env-file", default=dflt(None), help="Path to a .env file")
    p.add_argument("--account-id", default=dflt(None), help="Keygen account ID (overrides profile/env)")
    p.add_argument("--base-url", default=dflt(None), help="Keygen API base URL (overrides profile/env)")
    p.add_argument("--token", default=dflt(None), help="Keygen API token (overrides profile/env)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="keygen",
        description="Keygen CLI - license management from the command line",
    )
    p.add_argument("--version", action="version", version=f"keygen {__version__}")
    _global_options(p, None)

    # Same options on every leaf so they may follow the subcommand too
    common = argparse.ArgumentParser(add_help=False)
    _global_options(common, argparse.SUPPRESS)

    sub = p.add_subparsers(dest="cmd")

    def group(name: str, help_: str) -> argparse._SubParsersAction:
        g = sub.add_parser(name, help=help_)
        return g.add_subparsers(dest=f"{name}_cmd")

    def leaf(parent: argparse._SubParsersAction, name: str, help_: str, handler) -> argparse.ArgumentParser:
        lp = parent.add_parser(name, help=help_, parents=[common])
        lp.set_defaults(handler=handler)
        return lp

    # profile
    prof = group("profile", "Manage named profiles")
    leaf(prof, "list", "List all profiles", cmd_profile_list)
    for name, help_, handler in (
        ("add", "Add a new profile", cmd_profile_add),
        ("edit", "Edit an existing profile", cmd_profile_edit),
    ):
        lp = leaf(prof, name, help_, handler)
        lp.add_argument("name")
        lp.add_argument("--email", help="Account email (for token refresh)")
        lp.add_argument("--password", help="Account password (for token refresh)")
        lp.add_argument("--public-key", help="Ed25519 public key (hex) to verify response signatures")
    leaf(prof, "show", "Show profile details", cmd_profile_show).add_argument("name")
    leaf(prof, "delete", "Delete a profile", cmd_profile_delete).add_argument("name")
    leaf(prof, "use", "Set the default profile", cmd_profile_use).add_argument("name")
    lp = leaf(prof, "rename", "Rename a profile", cmd_profile_rename)
    lp.add_argument("old_name")
    lp.add_argument("new_name")

    # login / logout / whoami / config
    login = group("login", "Authenticate with Keygen")
    leaf(login, "token", "Login with an API token (--token or KEYGEN_TOKEN)", cmd_login_token)
    lp = leaf(login, "password", "Login with email and password", cmd_login_password)
    lp.add_argument("--email", help="Account email")
    lp.add_argument("--password", help="Password string (unsafe; prefer --password-stdin or env)")
    lp.add_argument("--password-stdin", action="store_true", help="Read password from STDIN")

    logout = sub.add_parser("logout", help="Clear saved authentication for the active profile", parents=[common])
    logout.set_defaults(handler=cmd_logout)
    whoami = sub.add_parser("whoami", help="Show current auth context and active profile", parents=[common])
    whoami.set_defaults(handler=cmd_whoami)

    conf = group("config", "Inspect CLI configuration")
    leaf(conf, "show", "Show the effective configuration", cmd_config_show)
    leaf(conf, "clear", "Remove the active profile", cmd_config_clear)

    # licenses
    lic = group("licenses", "Manage licenses")
    lp = leaf(lic, "list", "List licenses", cmd_licenses_list)
    lp.add_argument("--user", help="Filter by user ID")
    lp.add_argument("--product", help="Filter by product ID")
    lp.add_argument("--policy", help="Filter by policy ID")
    lp.add_argument("--status", help="Filter by status")
    lp.add_argument("--limit", type=int, default=10, help="Results per page")
    lp.add_argument("--page", type=int, default=1, help="Page number")
    for name, help_, handler in (
        ("show", "Show license details", cmd_licenses_show),
        ("status", "Check license status with validation", cmd_licenses_status),
        ("renew", "Renew a license", cmd_licenses_renew),
        ("suspend", "Suspend a license", cmd_licenses_suspend),
        ("reinstate", "Reinstate a suspended license", cmd_licenses_reinstate),
        ("components", "List all components for a license", cmd_licenses_components),
    ):
        leaf(lic, name, help_, handler).add_argument("license_id")
    lp = leaf(lic, "set-metadata", "Set license metadata keys (KEY=VALUE)", cmd_licenses_set_metadata)
    lp.add_argument("license_id")
    lp.add_argument("pairs", nargs="*", metavar="KEY=VALUE")
    lp.add_argument("--unset", action="append", metavar="KEY", help="Remove a metadata key")

    # components
    comp = group("components", "Manage machine components")
    leaf(comp, "check", "Check if a component fingerprint is registered", cmd_components_check).add_argument("fingerprint")
    lp = leaf(comp, "delete", "Delete a component by fingerprint", cmd_components_delete)
    lp.add_argument("fingerprint")
    lp.add_argument("--force", action="store_true", help="Skip confirmation")

    # users
    users = group("users", "Manage users")
    lp = leaf(users, "list", "List users", cmd_users_list)
    lp.add_argument("--email", help="Filter by email")
    lp.add_argument("--limit", type=int, default=10, help="Results per page")
    lp.add_argument("--page", type=int, default=1, help="Page number")
    leaf(users, "show", "Show user details", cmd_users_show).add_argument("user", metavar="USER_ID_OR_EMAIL")
    leaf(users, "status", "Show user status summary", cmd_users_status).add_argument("user", metavar="USER_ID_OR_EMAIL")
    lp = leaf(users, "update", "Update user attributes", cmd_users_update)
    lp.add_argument("user", metavar="USER_ID_OR_EMAIL")
    lp.add_argument("--first-name")
    lp.add_argument("--last-name")
    lp.add_argument("--email", dest="new_email", help="New email address")
    lp.add_argument("--role")
    lp.add_argument("--metadata", action="append", metavar="KEY=VALUE", help="Set a metadata key")

    # products
    products = group("products", "Inspect products")
    leaf(products, "list", "List products", cmd_products_list)

    # status
    status = sub.add_parser("status", help="Show account summary", parents=[common])
    status.add_argument("--user", help="Filter by user ID or email")
    status.add_argument("--fields", help=f"Comma-separated fields: {','.join(STATUS_FIELDS)}")
    status.set_defaults(handler=cmd_status)

    return p


# ------------------------
# Main
# ------------------------

def exit_code_for(exc: KeygenError) -> int:
    if isinstance(exc, RefreshFailed):
        return EXIT_AUTH
    if isinstance(exc, APIError):
        return EXIT_AUTH if exc.is_auth_error else EXIT_API
    if isinstance(exc, TransportError):
        return EXIT_NETWORK
    if isinstance(exc, (NotFound, Conflict)):
        return EXIT_NOT_FOUND
    if isinstance(exc, ConfigError):
        return EXIT_CONFIG
    return EXIT_API


def main(
    argv: list[str] | None = None,
    *,
    store: ProfileStore | None = None,
    transport_factory: t.Callable[..., Transport] | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        store = store or ProfileStore()
        load_env_files(args.env_file, directory=store.directory)
        ctx = Context(args, store, transport_factory or Transport)
        return handler(ctx, args)
    except RefreshFailed as e:
        output.error(str(e), hint=f"run 'keygen login password --profile {e.profile}' to sign in again")
        return exit_code_for(e)
    except KeygenError as e:
        output.error(str(e))
        return exit_code_for(e)
    except argparse.ArgumentTypeError as e:
        output.error(str(e))
        return EXIT_USAGE
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
