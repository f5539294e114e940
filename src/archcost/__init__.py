"""
archcost - architecture diagram cost estimation.

Prices every resource drawn on an architecture diagram, plus the resources a
cloud provider creates implicitly on your behalf (hidden dependencies).
"""

__version__ = "0.3.0"
