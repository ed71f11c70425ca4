"""cfdns: keeps Cloudflare DNS records pointed at the host's public IP addresses."""

__version__ = "0.3.1"
