"""Root conftest for the albacme test suite."""

from __future__ import annotations

import datetime
import itertools
import sys
import threading
from pathlib import Path
from typing import Any

import pytest
import yaml
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

LB_ARN = "arn:aws:elasticloadbalancing:us-west-2:123456789012:loadbalancer/app/test/abc"
TG_ARN = "arn:aws:elasticloadbalancing:us-west-2:123456789012:targetgroup/acme/def"
FUNCTION_ARN = "arn:aws:lambda:us-west-2:123456789012:function:albacme"


def client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


# ---------------------------------------------------------------------------
# In-memory ELBv2
# ---------------------------------------------------------------------------


class FakeElbv2:
    """Just enough of the boto3 ``elbv2`` client for the rule manager.

    Pages are deliberately small so every listing exercises
    ``Marker``/``NextMarker`` pagination.
    """

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.listeners: dict[str, list[dict[str, Any]]] = {}
        self.rules: dict[str, list[dict[str, Any]]] = {}
        self.listener_certificates: dict[str, list[dict[str, Any]]] = {}
        self.target_groups: list[dict[str, Any]] = []
        self.target_health: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # -- setup helpers --------------------------------------------------------

    def add_listener(self, lb_arn: str, protocol: str, port: int) -> str:
        arn = f"{lb_arn.replace(':loadbalancer/', ':listener/')}/{protocol.lower()}{port}"
        self.listeners.setdefault(lb_arn, []).append(
            {"ListenerArn": arn, "LoadBalancerArn": lb_arn, "Protocol": protocol, "Port": port},
        )
        self.rules[arn] = [
            {
                "RuleArn": f"{arn}/default",
                "Priority": "default",
                "IsDefault": True,
                "Conditions": [],
                "Actions": [{"Type": "fixed-response", "Order": 1}],
            }
        ]
        self.listener_certificates[arn] = []
        return arn

    def add_rule(
        self,
        listener_arn: str,
        priority: int | str,
        conditions: list[dict[str, Any]],
        actions: list[dict[str, Any]] | None = None,
    ) -> str:
        arn = f"{listener_arn}/rule/{next(self._ids)}"
        self.rules[listener_arn].append(
            {
                "RuleArn": arn,
                "Priority": str(priority),
                "IsDefault": False,
                "Conditions": conditions,
                "Actions": actions or [{"Type": "forward", "TargetGroupArn": TG_ARN}],
            }
        )
        return arn

    def add_target_group(
        self,
        arn: str,
        target_type: str = "lambda",
        load_balancers: list[str] | None = None,
        targets: list[str] | None = None,
    ) -> None:
        self.target_groups.append(
            {
                "TargetGroupArn": arn,
                "TargetType": target_type,
                "LoadBalancerArns": load_balancers or [],
            }
        )
        self.target_health[arn] = [{"Target": {"Id": t}} for t in targets or []]

    def non_default_rules(self, listener_arn: str) -> list[dict[str, Any]]:
        return [r for r in self.rules[listener_arn] if not r["IsDefault"]]

    # -- pagination -----------------------------------------------------------

    def _page(self, items: list[Any], key: str, marker: str | None, size: int) -> dict[str, Any]:
        start = int(marker) if marker else 0
        end = start + size
        page: dict[str, Any] = {key: items[start:end]}
        if end < len(items):
            page["NextMarker"] = str(end)
        return page

    # -- API ------------------------------------------------------------------

    def describe_listeners(self, LoadBalancerArn: str, Marker: str | None = None) -> dict:  # noqa: N803
        self.calls.append(("describe_listeners", {"LoadBalancerArn": LoadBalancerArn}))
        if LoadBalancerArn not in self.listeners:
            raise client_error("LoadBalancerNotFound", "DescribeListeners")
        return self._page(self.listeners[LoadBalancerArn], "Listeners", Marker, self.page_size)

    def describe_listener_certificates(self, ListenerArn: str, Marker: str | None = None) -> dict:  # noqa: N803
        certs = self.listener_certificates[ListenerArn]
        return self._page(certs, "Certificates", Marker, self.page_size)

    def describe_rules(
        self,
        ListenerArn: str,  # noqa: N803
        PageSize: int = 400,  # noqa: N803
        Marker: str | None = None,  # noqa: N803
    ) -> dict:
        self.calls.append(("describe_rules", {"ListenerArn": ListenerArn, "Marker": Marker}))
        if ListenerArn not in self.rules:
            raise client_error("ListenerNotFound", "DescribeRules")
        size = min(PageSize, self.page_size)
        return self._page(list(self.rules[ListenerArn]), "Rules", Marker, size)

    def create_rule(
        self,
        ListenerArn: str,  # noqa: N803
        Conditions: list[dict[str, Any]],  # noqa: N803
        Priority: int,  # noqa: N803
        Actions: list[dict[str, Any]],  # noqa: N803
    ) -> dict:
        self.calls.append(("create_rule", {"ListenerArn": ListenerArn, "Priority": Priority}))
        with self._lock:
            taken = {r["Priority"] for r in self.rules[ListenerArn]}
            if str(Priority) in taken:
                raise client_error("PriorityInUse", "CreateRule", f"Priority '{Priority}' is in use")
            arn = self.add_rule(ListenerArn, Priority, Conditions, Actions)
        return {"Rules": [{"RuleArn": arn, "Priority": str(Priority)}]}

    def delete_rule(self, RuleArn: str) -> dict:  # noqa: N803
        self.calls.append(("delete_rule", {"RuleArn": RuleArn}))
        for rules in self.rules.values():
            for rule in rules:
                if rule["RuleArn"] == RuleArn:
                    rules.remove(rule)
                    return {}
        raise client_error("RuleNotFound", "DeleteRule")

    def describe_target_groups(
        self,
        TargetGroupArns: list[str] | None = None,  # noqa: N803
        Marker: str | None = None,  # noqa: N803
    ) -> dict:
        if TargetGroupArns is not None:
            found = [g for g in self.target_groups if g["TargetGroupArn"] in TargetGroupArns]
            if len(found) != len(TargetGroupArns):
                raise client_error("TargetGroupNotFound", "DescribeTargetGroups")
            return {"TargetGroups": found}
        return self._page(self.target_groups, "TargetGroups", Marker, self.page_size)

    def describe_target_health(self, TargetGroupArn: str) -> dict:  # noqa: N803
        return {"TargetHealthDescriptions": self.target_health.get(TargetGroupArn, [])}


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        self.sleeps.append(seconds)
        self.now += seconds
        return cancel is not None and cancel.is_set()


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


def make_certificate_pem(
    common_name: str,
    issuer_org: str = "Let's Encrypt",
    issuer_cn: str = "R3",
) -> str:
    """Leaf certificate for *common_name* carrying the given issuer name.

    Signed with a throwaway key; only the names matter to the code
    under test.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer_org),
            x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn),
        ]
    )
    now = datetime.datetime.now(datetime.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=90))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def elbv2() -> FakeElbv2:
    """Load balancer with HTTP:80 and HTTPS:443 listeners and a lambda target group."""
    fake = FakeElbv2()
    fake.add_listener(LB_ARN, "HTTP", 80)
    fake.add_listener(LB_ARN, "HTTPS", 443)
    fake.add_target_group(
        "arn:aws:elasticloadbalancing:us-west-2:123456789012:targetgroup/web/001",
        target_type="instance",
        load_balancers=[LB_ARN],
        targets=["i-0abc"],
    )
    fake.add_target_group(TG_ARN, load_balancers=[LB_ARN], targets=[FUNCTION_ARN])
    return fake


@pytest.fixture()
def http_listener(elbv2: FakeElbv2) -> str:
    return elbv2.listeners[LB_ARN][0]["ListenerArn"]


@pytest.fixture()
def https_listener(elbv2: FakeElbv2) -> str:
    return elbv2.listeners[LB_ARN][1]["ListenerArn"]


@pytest.fixture()
def rules(elbv2: FakeElbv2):
    from albacme.loadbalancer.rules import ListenerRuleManager

    return ListenerRuleManager(elbv2)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings_data() -> dict:
    """Raw config with short timeouts, suitable for unit tests."""
    return {
        "acme": {"directory_url": "https://acme.test/directory", "email": "ops@example.test"},
        "account_key": {"store": "file", "path": "/tmp/albacme-test-key.pem"},
        "challenge": {
            "wait_timeout_seconds": 10,
            "poll_interval_seconds": 1.0,
            "probe_timeout_seconds": 2.0,
        },
        "validation": {
            "timeout_seconds": 10,
            "poll_interval_seconds": 2.0,
            "probe_timeout_seconds": 2.0,
        },
    }


@pytest.fixture()
def settings(settings_data: dict):
    from albacme.config.settings import build_settings

    return build_settings(settings_data)


@pytest.fixture()
def tmp_config_file(tmp_path: Path, settings_data: dict) -> Path:
    """Write *settings_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(settings_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg
