# SPDX-License-Identifier: LGPL-2.1-or-later

import ipaddress
import json
import subprocess
from typing import Any

from djinn.config import NetParameter
from djinn.log import die
from djinn.run import find_binary, run


def ip_json(*args: str) -> list[dict[str, Any]]:
    if not (ip := find_binary("ip")):
        die("Could not find the ip binary", hint="Install iproute2")

    out = run([ip, "-4", "-j", *args], stdout=subprocess.PIPE).stdout
    return json.loads(out) if out.strip() else []


def default_route(routes: list[dict[str, Any]]) -> tuple[str, str]:
    for route in routes:
        if route.get("dst") == "default" and "gateway" in route and "dev" in route:
            return route["gateway"], route["dev"]

    die("No default route found")


def interface_address(links: list[dict[str, Any]]) -> ipaddress.IPv4Interface:
    for link in links:
        for addr in link.get("addr_info", []):
            if addr.get("family", "inet") == "inet" and "local" in addr:
                return ipaddress.IPv4Interface(f"{addr['local']}/{addr['prefixlen']}")

    die("No IPv4 address found on the default route interface")


def query(parameter: NetParameter) -> str:
    """
    The WSL2 VM and the Windows host share one virtual network: the Windows side is the default
    gateway of the VM, so both subnets are the network of the interface carrying the default route.
    """
    gateway, dev = default_route(ip_json("route", "show", "default"))
    vm = interface_address(ip_json("addr", "show", "dev", dev))

    if parameter == NetParameter.vm_ip:
        return str(vm.ip)
    if parameter == NetParameter.win_ip:
        return gateway
    if parameter == NetParameter.vm_subnet:
        return str(vm.network)

    return str(ipaddress.ip_interface(f"{gateway}/{vm.network.prefixlen}").network)
