"""Listener rule management for Application Load Balancers."""

from albacme.loadbalancer.matcher import matches, path_pattern_matches
from albacme.loadbalancer.priority import next_priority
from albacme.loadbalancer.rules import ListenerRuleManager

__all__ = ["ListenerRuleManager", "matches", "next_priority", "path_pattern_matches"]
