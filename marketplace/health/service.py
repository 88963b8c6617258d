from urllib.parse import urlparse
import socket
from typing import Any, Dict, Optional

from marketplace import config

TABLES = ("users", "products", "orders", "payments")


def _check_table(client, name: str):
    try:
        res = client.table(name).select("id").limit(1).execute()
        cnt = len(res.data or [])
        return {"ok": True, "rows": cnt}
    except Exception as e:
        return {"ok": False, "error": str(e)}


def health_supabase_info(client: Optional[Any]) -> Dict[str, Any]:
    """Sonde DNS puis lecture d'une ligne par table critique du checkout."""
    parsed = urlparse(config.SUPABASE_URL) if config.SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    dns_error = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError as e:
            dns_ok = False
            dns_error = str(e)

    info = {
        "supabase_url": config.SUPABASE_URL,
        "hostname": hostname,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
        "connect_ok": False,
        "error": None,
        "tables": {},
        "gateway_configured": bool(config.FLUTTERWAVE_SECRET_KEY),
    }
    if client is None:
        info["error"] = "client Supabase non initialisé"
        return info
    for t in TABLES:
        info["tables"][t] = _check_table(client, t)
    info["connect_ok"] = all(t["ok"] for t in info["tables"].values())
    return info
