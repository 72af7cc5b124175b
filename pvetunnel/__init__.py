"""
pvetunnel - SSH tunnel + live migration driver for Proxmox VE
"""
__version__ = "0.1.0"
