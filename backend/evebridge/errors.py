# evebridge/errors.py

class EveBridgeError(Exception):
    """Base di tutti gli errori del pacchetto."""


class ParseError(EveBridgeError):
    """Riga di input non decodificabile come envelope eve."""


class StorageError(EveBridgeError):
    """Insert fallito sullo store eventi."""


class PublishError(EveBridgeError):
    """Publish sincrono non confermato dal broker."""


class HandoffError(EveBridgeError):
    """Messaggio consegnato dal broker non passabile al broadcaster."""


class StartupError(EveBridgeError):
    """Store o broker non raggiungibili all'avvio."""
