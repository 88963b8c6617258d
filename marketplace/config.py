# marketplace.config
from pathlib import Path
import os
from decimal import Decimal
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Flutterwave), sécurité cookies, CORS/hosts
- Expose les règles de prix (TVA, livraison) et les délais de paiement (timeout, TTL, fenêtre de relance)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(_clean_env(os.getenv(name) or default))

# Supabase: URL et clés
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

# Flutterwave: clés et secret de signature des webhooks (en-tête verif-hash)
FLUTTERWAVE_SECRET_KEY = _clean_env(os.getenv("FLUTTERWAVE_SECRET_KEY") or "")
FLUTTERWAVE_SECRET_HASH = _clean_env(os.getenv("FLUTTERWAVE_SECRET_HASH") or "")
FLUTTERWAVE_BASE_URL = _clean_env(os.getenv("FLUTTERWAVE_BASE_URL") or "https://api.flutterwave.com/v3").rstrip("/")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))

# Règles de prix (montants en RWF)
PAYMENT_CURRENCY = _clean_env(os.getenv("PAYMENT_CURRENCY") or "RWF")
TAX_RATE = _decimal_env("TAX_RATE", "0.18")
FREE_SHIPPING_THRESHOLD = _decimal_env("FREE_SHIPPING_THRESHOLD", "50000")
SHIPPING_FLAT_FEE = _decimal_env("SHIPPING_FLAT_FEE", "5000")

# Cycle de vie des paiements
# - PAYMENT_PENDING_TTL_MINUTES: au-delà, un paiement PENDING est re-vérifié puis expiré
# - PAYMENT_RETRY_WINDOW_HOURS: au-delà, une commande impayée est annulée
PAYMENT_PENDING_TTL_MINUTES = int(os.getenv("PAYMENT_PENDING_TTL_MINUTES", "30"))
PAYMENT_RETRY_WINDOW_HOURS = int(os.getenv("PAYMENT_RETRY_WINDOW_HOURS", "24"))
SWEEP_BATCH_SIZE = int(os.getenv("SWEEP_BATCH_SIZE", "100"))

# URLs publiques (redirection après paiement, logo)
STORE_NAME = os.getenv("STORE_NAME", "Iwanyu Store")
FRONTEND_URL = _clean_env(os.getenv("FRONTEND_URL") or "http://localhost:3000").rstrip("/")
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")
