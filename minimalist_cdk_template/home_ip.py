import logging

import requests

logger = logging.getLogger(__name__)

MY_IP_KEYWORD = "myip"
IP_LOOKUP_URL = "https://api.ipify.org"


class HomeIpLookupError(Exception):
    pass


def lookup_home_cidr(url: str = IP_LOOKUP_URL, timeout: float = 5.0) -> str:
    """Return this machine's public address as a /32 CIDR."""
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()

    my_home_ip = response.text.strip()
    if not my_home_ip:
        raise HomeIpLookupError(f"{url} returned an empty body")

    logger.info("Scoping SSH access to home IP %s", my_home_ip)
    return f"{my_home_ip}/32"


def expand_ssh_cidr(context: dict) -> dict:
    """Replace ``sshCidr=myip`` with the caller's public /32, leaving anything else alone."""
    ssh_cidr = context.get("sshCidr")
    if not isinstance(ssh_cidr, str) or ssh_cidr.strip().lower() != MY_IP_KEYWORD:
        return context

    return {**context, "sshCidr": lookup_home_cidr()}
