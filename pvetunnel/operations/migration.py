"""
Proxmox (pvesh) command templates for launching and watching a VM migration
"""
import shlex

from ..types import OperationDescriptor
from ..utils.logging import register_secret


def auth_header(op: OperationDescriptor) -> str:
    """
    Return the `-H 'Authorization: PVEAPIToken=<name>=<value>'` fragment,
    or "" when no complete token pair was given. The token is registered
    with the logger so it never reaches the console.
    """
    if not op.has_token:
        return ""
    register_secret(op.token_value)
    header = f"Authorization: PVEAPIToken={op.token_name}={op.token_value}"
    register_secret(header)
    return f"-H {shlex.quote(header)}"


def _qemu_path(op: OperationDescriptor) -> str:
    return f"/nodes/{shlex.quote(op.source_node)}/qemu/{int(op.vm_id)}"


def build_migrate_command(op: OperationDescriptor) -> str:
    parts = [
        "pvesh create", f"{_qemu_path(op)}/migrate",
        "--target", shlex.quote(op.destination_node),
        "--online 1",
        "--with-local-disks 1",
    ]
    auth = auth_header(op)
    if auth:
        parts.append(auth)
    return " ".join(parts)


def build_status_command(op: OperationDescriptor) -> str:
    parts = ["pvesh get", f"{_qemu_path(op)}/status/current"]
    auth = auth_header(op)
    if auth:
        parts.append(auth)
    parts.append("-output-format json")
    return " ".join(parts)
