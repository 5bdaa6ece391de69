import secrets
import string
import time
import uuid

_UPPER_ALNUM = string.ascii_uppercase + string.digits
_LOWER_ALNUM = string.ascii_lowercase + string.digits


def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def now_ms() -> int:
    return int(time.time() * 1000)


def _random(alphabet: str, n: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(n))


def withdrawal_reference() -> str:
    """Manual withdrawals, quoted to admins: WD-1718000000000-X7K2QD"""
    return f"WD-{now_ms()}-{_random(_UPPER_ALNUM, 6)}"


def payout_reference() -> str:
    # doubles as the CinetPay transfer client_transaction_id
    return f"KFLY-{now_ms()}-{_random(_LOWER_ALNUM, 9)}"


def cinetpay_transaction_id(reservation_id: str) -> str:
    return f"KFLY-{reservation_id[:8]}-{now_ms()}"
