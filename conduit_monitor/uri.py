"""
conduit:// 连接串解析

格式：conduit://<secret>@<host>:<port>
"""

from typing import Tuple
from urllib.parse import unquote, urlsplit

SCHEME = "conduit"


def parse_conduit_uri(uri: str) -> Tuple[str, int, str]:
    """
    解析连接串

    Returns:
        (host, port, secret)

    Raises:
        ValueError: 协议、密钥、主机或端口缺失/非法
    """
    if not uri.startswith(f"{SCHEME}://"):
        raise ValueError("URI must start with conduit://")

    parts = urlsplit(uri)
    secret = unquote(parts.username or "")
    host = parts.hostname or ""
    try:
        port = parts.port
    except ValueError:
        port = None

    if not secret:
        raise ValueError("Missing secret in conduit:// URI")
    if not host:
        raise ValueError("Missing host in conduit:// URI")
    if not port:
        raise ValueError("Missing or invalid port in conduit:// URI")

    return host, port, secret
