import logging
import json
import os

from wallet_ledger.core.config import config
from wallet_ledger.models import WalletTransaction

# logging wallet transactions
TRANSACTION_FIELDS = {c.name for c in WalletTransaction.__table__.columns}

# logger name -> файл
LOG_FILES = {
    "[INTERNAL]": "internal.log",
    "[PUBLIC]": "public_wallet.log",
    "[ADMIN]": "admin.log",
    "[LEDGER]": "ledger.log",
    "[REFUNDS]": "refunds.log",
    "[SUBSCRIPTIONS]": "subscriptions.log",
}


class ModelFormatter(logging.Formatter):
    def __init__(self, fmt=None, fields=None):
        super().__init__(fmt)
        self.fields = fields or set()

    def format(self, record):
        base = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k in self.fields}
        if extras:
            base += " " + json.dumps(extras, default=str, ensure_ascii=False)
        return base


# setup
def setup_logging(log_dir: str | None = None):
    log_dir = log_dir or config.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    formatter_tx = ModelFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        fields=TRANSACTION_FIELDS
    )

    for name, filename in LOG_FILES.items():
        path = os.path.abspath(os.path.join(log_dir, filename))
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG if config.DEBUG_MODE else logging.INFO)
        # повторний виклик (тести, reload) не дублює handlers
        if any(
            isinstance(h, logging.FileHandler) and h.baseFilename == path
            for h in logger.handlers
        ):
            continue
        handler = logging.FileHandler(path)
        handler.setFormatter(formatter_tx)
        logger.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
