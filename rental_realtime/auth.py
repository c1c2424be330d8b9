# ============================================
#   Rental Realtime — Connection token verification
# ============================================

import requests

from rental_realtime.logger import log_warning, log_exception


def verify_token(token, user_id, verify_url="", require=False, timeout=8):
    """
    Validate a connection token against the auth service.

    - No token supplied          → accepted (anonymous userId connection).
    - No verify_url configured   → bypassed in dev, refused when `require` is set.
    - Otherwise the service must answer 200 {"valid": true}; when it also
      returns a userId, it must match the connecting userId.
    """
    token = str(token or "").strip()
    if not token:
        return True

    if not verify_url:
        if require:
            log_warning("auth", "TOKEN_VERIFY_URL missing — token verification REQUIRED.")
            return False
        log_warning("auth", "TOKEN_VERIFY_URL missing — bypassing token verification (dev mode).")
        return True

    try:
        r = requests.post(verify_url, json={"token": token}, timeout=timeout)

        if r.status_code != 200:
            log_warning("auth", f"Token verify HTTP {r.status_code}: {r.text[:300]}")
            return False

        try:
            resp = r.json()
        except ValueError:
            log_warning("auth", f"Token verify non-JSON response: {r.text[:300]}")
            return False

        if not resp.get("valid", False):
            log_warning("auth", f"Token rejected for user={user_id}")
            return False

        claimed = resp.get("userId")
        if claimed is not None and str(claimed) != str(user_id):
            log_warning("auth", f"Token belongs to user={claimed}, not {user_id}")
            return False

        return True

    except requests.RequestException as e:
        log_exception("auth", f"Token verify error: {e}")
        return False
