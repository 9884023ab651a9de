"""albacme -- HTTP-01 certificate rotation for AWS Application Load Balancers."""

__version__ = "0.4.0"
