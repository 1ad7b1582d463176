# Common utilities
from otcbal.common.crypto import CipherSession as CipherSession
from otcbal.common.crypto import CryptoUtils as CryptoUtils
from otcbal.common.crypto import derive_cipher as derive_cipher
from otcbal.common.crypto import fingerprint as fingerprint
from otcbal.common.logging_utils import setup_logger as setup_logger
from otcbal.common.mixins import Configurable as Configurable

__all__ = [
    "CipherSession",
    "Configurable",
    "CryptoUtils",
    "derive_cipher",
    "fingerprint",
    "setup_logger",
]
