"""
Edge LB Manager

Reconciles cluster load-balancer requests onto an edge gateway:
DNAT rules, load balancer pools, virtual services and the shared
virtual IP record of each cluster.
"""

__version__ = "0.1.0"
