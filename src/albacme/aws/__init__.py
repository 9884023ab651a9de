"""Thin wrappers over the AWS services albacme talks to.

Public API::

    from albacme.aws import AwsClients

    clients = AwsClients.from_settings(settings.aws)
    clients.elbv2.describe_listeners(...)
"""

from albacme.aws.acm import CertificateStore
from albacme.aws.session import AwsClients
from albacme.aws.ssm import ParameterStore

__all__ = ["AwsClients", "CertificateStore", "ParameterStore"]
