"""Linode Kubernetes Engine remote control-plane client.

Example:
    from lke_driver.linode import LinodeClient

    async with LinodeClient(token) as client:
        cluster = await client.get_cluster(1234)
"""

from lke_driver.linode.client import LinodeClient, LKEApi

__all__ = ["LKEApi", "LinodeClient"]
