"""CRUD over an Application Load Balancer listener's rule table.

The rule table is shared, externally owned state: other invocations may
add or remove rules at any moment.  Nothing here caches rules or
priorities; every allocation and every delete re-lists the table.

A duplicate priority caused by a concurrent writer surfaces as the
control plane's ``PriorityInUse`` error and is propagated untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

from botocore.exceptions import ClientError

from albacme.core.errors import (
    ListenerNotFound,
    LoadBalancerNotFound,
    RuleNotFound,
    TargetGroupNotFound,
)
from albacme.core.types import ListenerProtocol, ListenerRule, RuleCondition
from albacme.loadbalancer.matcher import matches
from albacme.loadbalancer.priority import next_priority

log = logging.getLogger(__name__)

RULES_PAGE_SIZE = 400
CHALLENGE_CONTENT_TYPE = "text/plain"


def _paginate(
    operation: Callable[..., dict[str, Any]],
    result_key: str,
    **kwargs: Any,
) -> Iterator[dict[str, Any]]:
    """Follow ELBv2 ``Marker`` / ``NextMarker`` pagination to the last page."""
    marker: str | None = None
    while True:
        if marker:
            kwargs["Marker"] = marker
        page = operation(**kwargs)
        yield from page.get(result_key) or ()
        marker = page.get("NextMarker")
        if not marker:
            return


class ListenerRuleManager:
    """Listener and rule operations on top of a boto3 ``elbv2`` client.

    Parameters
    ----------
    elbv2:
        A boto3 ``elbv2`` client (or anything with the same methods).

    """

    def __init__(self, elbv2: Any) -> None:
        self._elbv2 = elbv2

    # -- listeners ----------------------------------------------------------

    def find_listener(
        self,
        load_balancer_arn: str,
        protocol: ListenerProtocol,
        port: int,
    ) -> str:
        """Return the ARN of the listener bound to *protocol* and *port*.

        Raises :class:`ListenerNotFound` when the load balancer has no
        such listener.
        """
        listeners = _paginate(
            self._elbv2.describe_listeners,
            "Listeners",
            LoadBalancerArn=load_balancer_arn,
        )
        for listener in listeners:
            if listener.get("Protocol") == protocol and listener.get("Port") == port:
                return listener["ListenerArn"]
        msg = f"no {protocol} listener on port {port} for load balancer {load_balancer_arn}"
        raise ListenerNotFound(msg)

    def find_http_listener(self, load_balancer_arn: str, port: int = 80) -> str:
        return self.find_listener(load_balancer_arn, ListenerProtocol.HTTP, port)

    def find_https_listener(self, load_balancer_arn: str, port: int = 443) -> str:
        return self.find_listener(load_balancer_arn, ListenerProtocol.HTTPS, port)

    def listener_certificate_arns(self, listener_arn: str) -> list[str]:
        """Certificates attached to a listener, default certificate included.

        The control plane may report the default certificate twice; each
        ARN is returned once, in first-seen order.
        """
        seen: dict[str, None] = {}
        certificates = _paginate(
            self._elbv2.describe_listener_certificates,
            "Certificates",
            ListenerArn=listener_arn,
        )
        for cert in certificates:
            arn = cert.get("CertificateArn")
            if arn:
                seen.setdefault(arn, None)
        return list(seen)

    # -- rules --------------------------------------------------------------

    def list_rules(self, listener_arn: str) -> list[ListenerRule]:
        """Every rule on the listener, all pages traversed."""
        raw_rules = _paginate(
            self._elbv2.describe_rules,
            "Rules",
            ListenerArn=listener_arn,
            PageSize=RULES_PAGE_SIZE,
        )
        return [ListenerRule.from_aws(rule) for rule in raw_rules]

    def allocate_priority(self, listener_arn: str) -> int:
        """Lowest free priority on the listener, computed from a fresh listing."""
        return next_priority(rule.priority for rule in self.list_rules(listener_arn))

    def add_static_rule(
        self,
        listener_arn: str,
        condition: RuleCondition,
        response_body: str,
        priority: int | None = None,
    ) -> str:
        """Create a rule answering 200 ``text/plain`` with *response_body*.

        Returns the new rule's ARN.
        """
        actions = [
            {
                "Type": "fixed-response",
                "FixedResponseConfig": {
                    "ContentType": CHALLENGE_CONTENT_TYPE,
                    "StatusCode": "200",
                    "MessageBody": response_body,
                },
            }
        ]
        return self._create_rule(listener_arn, condition, actions, priority)

    def add_forwarding_rule(
        self,
        listener_arn: str,
        condition: RuleCondition,
        target_group_arn: str,
        priority: int | None = None,
    ) -> str:
        """Create a rule forwarding matching requests to *target_group_arn*."""
        actions = [{"Type": "forward", "TargetGroupArn": target_group_arn}]
        return self._create_rule(listener_arn, condition, actions, priority)

    def _create_rule(
        self,
        listener_arn: str,
        condition: RuleCondition,
        actions: list[dict[str, Any]],
        priority: int | None,
    ) -> str:
        if priority is None:
            priority = self.allocate_priority(listener_arn)
        response = self._elbv2.create_rule(
            ListenerArn=listener_arn,
            Conditions=condition.to_aws(),
            Priority=priority,
            Actions=actions,
        )
        rule_arn = response["Rules"][0]["RuleArn"]
        log.info(
            "Created %s rule %s at priority %d for %s",
            actions[0]["Type"],
            rule_arn,
            priority,
            condition,
        )
        return rule_arn

    def find_matching_rule(
        self,
        listener_arn: str,
        condition: RuleCondition,
    ) -> ListenerRule | None:
        """First non-default rule whose condition matches *condition*."""
        for rule in self.list_rules(listener_arn):
            if rule.is_default:
                continue
            if matches(rule.condition, condition):
                return rule
        return None

    def delete_matching_rule(
        self,
        listener_arn: str,
        condition: RuleCondition,
    ) -> ListenerRule:
        """Delete the first rule matching *condition* and return it.

        Raises :class:`RuleNotFound` when nothing matches; callers
        tearing down temporary rules treat that as already clean.
        """
        rule = self.find_matching_rule(listener_arn, condition)
        if rule is None:
            msg = f"no rule matching {condition} on listener {listener_arn}"
            raise RuleNotFound(msg)
        self._elbv2.delete_rule(RuleArn=rule.rule_arn)
        log.info("Deleted rule %s (priority %s) for %s", rule.rule_arn, rule.priority, condition)
        return rule

    # -- target groups ------------------------------------------------------

    def resolve_load_balancer(self, target_group_arn: str) -> str:
        """ARN of the load balancer *target_group_arn* is attached to.

        A target group belongs to at most one load balancer.
        """
        try:
            response = self._elbv2.describe_target_groups(TargetGroupArns=[target_group_arn])
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "TargetGroupNotFound":
                msg = f"cannot find target group with arn {target_group_arn}"
                raise TargetGroupNotFound(msg) from exc
            raise

        groups = response.get("TargetGroups") or []
        if not groups:
            msg = f"cannot find target group with arn {target_group_arn}"
            raise TargetGroupNotFound(msg)
        load_balancers = groups[0].get("LoadBalancerArns") or []
        if not load_balancers:
            msg = f"target group {target_group_arn} has no load balancer"
            raise LoadBalancerNotFound(msg)
        return load_balancers[0]

    def find_lambda_target_group(self, function_arn: str) -> str:
        """Target group of type ``lambda`` whose registered target is *function_arn*.

        Registered target ids are unqualified or alias-qualified function
        ARNs, so a target matches when it is a prefix of *function_arn*.
        """
        log.debug("Searching for target group for lambda %s", function_arn)
        groups = _paginate(self._elbv2.describe_target_groups, "TargetGroups")
        for group in groups:
            if group.get("TargetType") != "lambda":
                continue
            group_arn = group["TargetGroupArn"]
            health = self._elbv2.describe_target_health(TargetGroupArn=group_arn)
            for desc in health.get("TargetHealthDescriptions") or ():
                target_id = (desc.get("Target") or {}).get("Id")
                if target_id and function_arn.startswith(target_id):
                    return group_arn
        msg = f"no target group found for lambda {function_arn}"
        raise TargetGroupNotFound(msg)
